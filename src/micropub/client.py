"""
Micropub protocol client.

Wire-level client for a user's Micropub and media endpoints: creating
posts, uploading files, and the paged ``q=`` queries the admin uses to
browse existing posts and media.

Every request carries ``Authorization: Bearer <token>`` and a bounded
timeout. Transport failures raise TransportError; a post answered with a
non-2xx status is *returned* so callers decide what it means.

Usage:
    >>> client = MicropubClient(timeout=10)
    >>> result = client.send_request([("h", "entry"), ("content", "hi")], endpoint, token)
    >>> result.status_code, result.location
    (201, 'https://example.com/notes/1')

References:
    - W3C Micropub: https://www.w3.org/TR/micropub/
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Iterable, List, Optional, Tuple, Union

import requests

from session.errors import AdminError, TransportError
from session.models import UserSession, parse_coordinate


logger = logging.getLogger(__name__)

USER_AGENT = "micropub-admin Micropub client"
MEDIA_PAGE_SIZE = 15

FormData = Union[Dict[str, Any], Iterable[Tuple[str, str]]]


class UploadError(AdminError):
    """A single file could not be stored by the media endpoint."""

    status_code = 502


@dataclass
class UploadedFile:
    """A file received from the browser, ready to forward to the media endpoint."""
    filename: str
    stream: BinaryIO
    content_type: str = "application/octet-stream"


@dataclass
class MicropubResponse:
    """Status and ``Location`` of a Micropub create request."""
    status_code: int
    location: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class MediaEndpointResponse:
    """Result of a media upload.

    ``url`` always comes from the response's Location header; ``location``
    is the photo's geo URI when the media endpoint extracted one.
    """
    url: str = ""
    location: str = ""
    published: str = ""


@dataclass
class Paging:
    after: str = ""


@dataclass
class PostList:
    """One page of ``q=source`` results: mf2 JSON items."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    paging: Optional[Paging] = None


@dataclass
class ArchiveYear:
    year: str
    count: int = 0


@dataclass
class ArchiveMonth:
    month: str
    count: int = 0


@dataclass
class MediaItem:
    url: str = ""
    mime_type: str = ""
    date_time: Optional[str] = None
    lat: float = 0.0
    lng: float = 0.0
    is_published: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaItem":
        return cls(
            url=data.get("url", "") or "",
            mime_type=data.get("mime_type", "") or "",
            date_time=data.get("date_time"),
            lat=parse_coordinate(data.get("lat")),
            lng=parse_coordinate(data.get("lng")),
            is_published=bool(data.get("is_published", False)),
        )


@dataclass
class MediaList:
    """One page of media endpoint ``q=source`` results."""
    items: List[MediaItem] = field(default_factory=list)
    paging: Optional[Paging] = None


def _as_count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _parse_paging(body: Dict[str, Any]) -> Optional[Paging]:
    paging = body.get("paging")
    if not isinstance(paging, dict):
        return None
    return Paging(after=str(paging.get("after", "") or ""))


class MicropubClient:
    """Sends authenticated requests to Micropub and media endpoints.

    Args:
        timeout: Timeout in seconds for each request.
        session: Optional requests Session (tests pass a mock).
    """

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT
        self.session = session

    @staticmethod
    def _auth(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def send_request(self, form: FormData, endpoint: str, token: str) -> MicropubResponse:
        """POST a form-encoded Micropub request.

        Args:
            form: Dict or ordered (key, value) pairs; repeated keys such as
                ``photo`` keep their order.
            endpoint: The Micropub endpoint.
            token: The session's access token.

        Returns:
            MicropubResponse with the raw status code and Location header.

        Raises:
            TransportError: If no response was received.
        """
        logger.info(f"Sending micropub request: micropub_endpoint={endpoint}")
        try:
            response = self.session.post(
                endpoint,
                data=form,
                headers={
                    **self._auth(token),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to perform micropub request: endpoint={endpoint}, error={e}")
            raise TransportError(f"Micropub request failed: {e}") from e

        logger.info(f"Micropub response: status_code={response.status_code}")
        return MicropubResponse(
            status_code=response.status_code,
            location=response.headers.get("Location", "") or "",
        )

    def upload_to_media_server(self, uploaded_file: UploadedFile, usess: UserSession) -> MediaEndpointResponse:
        """Upload one file to the session's media endpoint.

        Raises:
            UploadError: If there is no media endpoint, or the upload was refused
                or answered without a Location header.
            TransportError: If no response was received.
        """
        if not usess.media_endpoint:
            raise UploadError("No media endpoint discovered for this session")

        files = {
            "file": (uploaded_file.filename, uploaded_file.stream, uploaded_file.content_type),
        }
        try:
            response = self.session.post(
                usess.media_endpoint,
                files=files,
                headers=self._auth(usess.access_token),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to upload to media endpoint {usess.media_endpoint}: {e}")
            raise TransportError(f"Media upload failed: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.warning(
                f"Media endpoint refused upload: filename={uploaded_file.filename}, "
                f"status_code={response.status_code}"
            )
            raise UploadError(f"Media endpoint returned HTTP {response.status_code}")

        url = response.headers.get("Location", "") or ""
        if not url:
            logger.warning(f"Media endpoint accepted {uploaded_file.filename} but sent no Location header")
            raise UploadError("Media endpoint response has no Location header")

        result = MediaEndpointResponse(url=url)
        try:
            body = response.json()
        except ValueError:
            logger.warning(f"Failed to decode media endpoint response for {uploaded_file.filename}")
            body = {}

        if isinstance(body, dict):
            result.location = str(body.get("location", "") or "")
            result.published = str(body.get("published", "") or "")

        logger.info(f"Media uploaded: filename={uploaded_file.filename}, url={result.url}")
        return result

    def _query(self, endpoint: str, token: str, params: List[Tuple[str, str]]) -> Any:
        logger.info(f"Querying endpoint: endpoint={endpoint}, params={params}")
        try:
            response = self.session.get(
                endpoint,
                params=params,
                headers={**self._auth(token), "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to perform GET request: endpoint={endpoint}, error={e}")
            raise TransportError(f"Query failed: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Query returned HTTP {response.status_code}: endpoint={endpoint}")
            raise TransportError(f"Query returned HTTP {response.status_code}")

        try:
            return response.json()
        except (ValueError, json.JSONDecodeError) as e:
            logger.error(f"Failed to decode json: endpoint={endpoint}, error={e}")
            raise TransportError(f"Query returned invalid JSON: {e}") from e

    def query_post_list(self, micropub_endpoint: str, access_token: str, after: str = "") -> PostList:
        """``q=source[&after=]`` on the Micropub endpoint."""
        params = [("q", "source")]
        if after:
            params.append(("after", after))
        body = self._query(micropub_endpoint, access_token, params)
        if not isinstance(body, dict):
            raise TransportError("Post list response is not an object")

        items = [i for i in body.get("items", []) or [] if isinstance(i, dict)]
        return PostList(items=items, paging=_parse_paging(body))

    def query_years_list(self, endpoint: str, access_token: str) -> List[ArchiveYear]:
        """``q=years``: the years that have content, with counts."""
        body = self._query(endpoint, access_token, [("q", "years")])
        if not isinstance(body, list):
            raise TransportError("Years list response is not a list")
        return [
            ArchiveYear(year=str(y.get("year", "")), count=_as_count(y.get("count")))
            for y in body if isinstance(y, dict)
        ]

    def query_months_list(self, endpoint: str, access_token: str, year: str) -> List[ArchiveMonth]:
        """``q=months&year=``: the months of ``year`` that have content."""
        body = self._query(endpoint, access_token, [("q", "months"), ("year", year)])
        if not isinstance(body, list):
            raise TransportError("Months list response is not a list")
        return [
            ArchiveMonth(month=str(m.get("month", "")), count=_as_count(m.get("count")))
            for m in body if isinstance(m, dict)
        ]

    def query_media_list(
        self,
        media_endpoint: str,
        access_token: str,
        after: str = "",
        year: str = "",
        month: str = "",
    ) -> MediaList:
        """One page of media, by year and month or continuing from ``after``."""
        params = [("q", "source"), ("limit", str(MEDIA_PAGE_SIZE))]
        if after:
            params.append(("after", after))
        else:
            params.extend([("year", year), ("month", month)])

        body = self._query(media_endpoint, access_token, params)
        if not isinstance(body, dict):
            raise TransportError("Media list response is not an object")

        items = [MediaItem.from_dict(i) for i in body.get("items", []) or [] if isinstance(i, dict)]
        return MediaList(items=items, paging=_parse_paging(body))

    def query_media_url(self, url: str, media_endpoint: str, access_token: str) -> MediaItem:
        """``q=source&url=``: a single media item."""
        body = self._query(media_endpoint, access_token, [("q", "source"), ("url", url)])
        if not isinstance(body, dict):
            raise TransportError("Media item response is not an object")
        return MediaItem.from_dict(body)
