"""
User session data model.

A UserSession is created for every login attempt. It records the claimed
profile URL, the endpoints discovered on it, the access token once the
IndieAuth callback succeeds, and the composer state staged across requests.
The session is the single unit of persistence: every other type here is
owned by value inside it.

State transitions are pure: the ``with_*`` methods return a new session and
never mutate the receiver, so a caller holding a stale copy cannot leak
changes into another request's copy.

Usage:
    >>> usess = UserSession.new("https://example.com/", "https://admin.example/", "https://admin.example/cb")
    >>> usess.uid == usess.state
    True
    >>> usess = usess.with_photo("https://media.example.com/a.jpg", "2024-01-01T10:00:00Z", Location())
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


DEFAULT_SCOPE = "create"


def parse_coordinate(value: Any) -> float:
    """Parse a latitude or longitude, falling back to 0.0.

    Unparseable and non-finite values (``nan``, ``inf``) both fall back.
    """
    try:
        coordinate = float(value)
    except (TypeError, ValueError):
        return 0.0
    return coordinate if math.isfinite(coordinate) else 0.0


@dataclass(frozen=True)
class Location:
    """A place attached to a photo or to the post being composed."""
    locality: str = ""
    region: str = ""
    country: str = ""
    lat: float = 0.0
    lng: float = 0.0

    def has_lat_lng(self) -> bool:
        return self.lat != 0 or self.lng != 0

    def to_geo_url(self) -> str:
        """Format as an RFC 5870 geo URI, e.g. ``geo:53.8,-1.5``."""
        return f"geo:{self.lat},{self.lng}"

    def to_human(self) -> str:
        """Comma separated place name, skipping empty parts."""
        return ", ".join(p for p in (self.locality, self.region, self.country) if p)

    @classmethod
    def from_geo_url(cls, geo_url: str) -> "Location":
        """Parse the ``geo:lat,lng`` value a media endpoint returns.

        Empty or malformed values yield a location with zero coordinates.
        """
        if not geo_url:
            return cls()
        value = geo_url.strip()
        if value.startswith("geo:"):
            value = value[len("geo:"):]
        value = value.split(";", 1)[0]
        parts = value.split(",")
        lat = parse_coordinate(parts[0]) if parts else 0.0
        lng = parse_coordinate(parts[1]) if len(parts) > 1 else 0.0
        return cls(lat=lat, lng=lng)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locality": self.locality,
            "region": self.region,
            "country": self.country,
            "lat": self.lat,
            "lng": self.lng,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        data = data or {}
        return cls(
            locality=data.get("locality", ""),
            region=data.get("region", ""),
            country=data.get("country", ""),
            lat=parse_coordinate(data.get("lat", 0.0)),
            lng=parse_coordinate(data.get("lng", 0.0)),
        )


@dataclass(frozen=True)
class MediaUpload:
    """Result of one successful upload to the media endpoint."""
    url: str
    published: str = ""
    location: Location = field(default_factory=Location)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "published": self.published,
            "location": self.location.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaUpload":
        return cls(
            url=data.get("url", ""),
            published=data.get("published", ""),
            location=Location.from_dict(data.get("location", {})),
        )


@dataclass(frozen=True)
class ComposerData:
    """In-progress post state staged across several requests."""
    photos: List[MediaUpload] = field(default_factory=list)
    published: str = ""
    location: Location = field(default_factory=Location)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photos": [p.to_dict() for p in self.photos],
            "published": self.published,
            "location": self.location.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComposerData":
        data = data or {}
        return cls(
            photos=[MediaUpload.from_dict(p) for p in data.get("photos", [])],
            published=data.get("published", ""),
            location=Location.from_dict(data.get("location", {})),
        )


@dataclass(frozen=True)
class HCard:
    """Author card discovered on the profile page at login."""
    name: str = ""
    url: str = ""
    photo: str = ""

    def is_empty(self) -> bool:
        return not (self.name or self.url or self.photo)

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "url": self.url, "photo": self.photo}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HCard":
        data = data or {}
        return cls(
            name=data.get("name", ""),
            url=data.get("url", ""),
            photo=data.get("photo", ""),
        )


@dataclass(frozen=True)
class UserSession:
    """One login attempt, and once authenticated, one logged in user.

    Attributes:
        uid: Opaque session id, also used as the CSRF ``state`` token
        me: Claimed profile URL
        state: Equal to ``uid`` when the session is created
        access_token: Empty until the IndieAuth callback succeeds
    """
    uid: str
    me: str
    client_id: str = ""
    redirect_uri: str = ""
    scope: str = DEFAULT_SCOPE
    state: str = ""
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    micropub_endpoint: str = ""
    media_endpoint: str = ""
    access_token: str = ""
    token_type: str = ""
    composer_data: ComposerData = field(default_factory=ComposerData)
    hcard: HCard = field(default_factory=HCard)

    @classmethod
    def new(cls, me: str, client_id: str, redirect_uri: str) -> "UserSession":
        """Allocate a fresh session whose ``state`` equals its ``uid``."""
        uid = str(uuid.uuid4())
        return cls(
            uid=uid,
            me=me,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=DEFAULT_SCOPE,
            state=uid,
        )

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    def build_auth_redirect_url(self) -> str:
        """Build the authorization endpoint URL the user is redirected to.

        Query parameters already present on the endpoint are preserved;
        the IndieAuth parameters replace any with the same name.
        """
        parsed = urlparse(self.authorization_endpoint)
        params = {
            "me": self.me,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
            "scope": self.scope,
            "response_type": "code",
        }
        query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in params]
        query.extend(sorted(params.items()))
        return urlunparse(parsed._replace(query=urlencode(query)))

    def with_endpoints(
        self,
        authorization_endpoint: str,
        token_endpoint: str,
        micropub_endpoint: str,
        media_endpoint: str,
    ) -> "UserSession":
        return replace(
            self,
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
            micropub_endpoint=micropub_endpoint,
            media_endpoint=media_endpoint,
        )

    def with_hcard(self, hcard: HCard) -> "UserSession":
        return replace(self, hcard=hcard)

    def with_token(self, access_token: str, token_type: str) -> "UserSession":
        return replace(self, access_token=access_token, token_type=token_type)

    def with_photo(self, url: str, published: str, location: Location) -> "UserSession":
        """Append a staged photo.

        The composer's ``published`` value follows the most recent photo
        that carried one; an empty ``published`` leaves it unchanged.
        """
        composer = self.composer_data
        photos = list(composer.photos) + [MediaUpload(url=url, published=published, location=location)]
        new_published = published if published else composer.published
        return replace(
            self,
            composer_data=replace(composer, photos=photos, published=new_published),
        )

    def with_location(self, location: Location) -> "UserSession":
        return replace(self, composer_data=replace(self.composer_data, location=location))

    def with_cleared_composer(self) -> "UserSession":
        return replace(self, composer_data=ComposerData())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "me": self.me,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": self.state,
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "micropub_endpoint": self.micropub_endpoint,
            "media_endpoint": self.media_endpoint,
            "access_token": self.access_token,
            "token_type": self.token_type,
            "composer_data": self.composer_data.to_dict(),
            "hcard": self.hcard.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserSession":
        return cls(
            uid=data["uid"],
            me=data.get("me", ""),
            client_id=data.get("client_id", ""),
            redirect_uri=data.get("redirect_uri", ""),
            scope=data.get("scope", DEFAULT_SCOPE),
            state=data.get("state", ""),
            authorization_endpoint=data.get("authorization_endpoint", ""),
            token_endpoint=data.get("token_endpoint", ""),
            micropub_endpoint=data.get("micropub_endpoint", ""),
            media_endpoint=data.get("media_endpoint", ""),
            access_token=data.get("access_token", ""),
            token_type=data.get("token_type", ""),
            composer_data=ComposerData.from_dict(data.get("composer_data", {})),
            hcard=HCard.from_dict(data.get("hcard", {})),
        )
