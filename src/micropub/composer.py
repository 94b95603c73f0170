"""
Composer: stages a post across several requests, then submits it.

A logged in user builds a post in steps (upload photos, pick media from
the gallery, set a location) before writing the text and submitting. The
staged values live in the session's ComposerData; each step reads the
session, applies one pure transition, and writes it back while holding the
session's lock.

Usage:
    >>> composer = Composer(store, MicropubClient(timeout=10))
    >>> composer.add_photos(session_id, [UploadedFile("a.jpg", fh, "image/jpeg")])
    >>> composer.submit_post(session_id, "Hello", "entry").status_code
    201
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from micropub.client import MicropubClient, UploadError, UploadedFile
from session.errors import StoreError, TransportError
from session.models import Location, UserSession, parse_coordinate
from session.response import Response, error_response, redirect
from session.store import SessionLocks, SessionStore


logger = logging.getLogger(__name__)

COMPOSER_PATH = "/composer"


def _now() -> str:
    """Current UTC time as an RFC 3339 timestamp."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class Geocoder(ABC):
    """Turns a free-text address into candidate locations."""

    @abstractmethod
    def lookup(self, address: str) -> List[Location]:
        """Return candidate locations for ``address`` (possibly empty)."""


class NullGeocoder(Geocoder):
    """Geocoder used when none is configured: never finds anything."""

    def lookup(self, address: str) -> List[Location]:
        return []


class Composer:
    """Composer operations over a session store.

    Args:
        session_store: Where sessions are read and written.
        client: Micropub client used for uploads and submission.
        geocoder: Location search backend; defaults to NullGeocoder.
        locks: Per-session locks shared with the auth client.
    """

    def __init__(
        self,
        session_store: SessionStore,
        client: MicropubClient,
        geocoder: Optional[Geocoder] = None,
        locks: Optional[SessionLocks] = None,
    ):
        self.session_store = session_store
        self.client = client
        self.geocoder = geocoder or NullGeocoder()
        self.locks = locks or SessionLocks()

    def add_photos(self, session_id: str, files: Iterable[UploadedFile]) -> Response:
        """Upload each file and stage the ones the media endpoint accepted.

        A failed upload is logged and skipped; files after it are still
        tried. Each staged photo is persisted as soon as it is added.
        """
        with self.locks.hold(session_id):
            try:
                usess = self.session_store.fetch_by_id(session_id)
            except StoreError as e:
                logger.error(f"Failed to fetch session {session_id}: {e}")
                return error_response(e)

            logger.info(f"Sending photos to media endpoint: media_endpoint={usess.media_endpoint}")

            for uploaded_file in files:
                try:
                    result = self.client.upload_to_media_server(uploaded_file, usess)
                except (UploadError, TransportError) as e:
                    logger.error(f"Failed to upload {uploaded_file.filename} to media endpoint: {e}")
                    continue

                location = Location.from_geo_url(result.location)
                usess = usess.with_photo(result.url, result.published, location)
                logger.info(f"Photo staged: session={session_id}, url={result.url}")

                try:
                    self.session_store.create(usess)
                except StoreError as e:
                    logger.error(f"Failed to save session {session_id}: {e}")

        return redirect(COMPOSER_PATH)

    def add_media(self, session_id: str, url: str, published: str, lat: Any, lng: Any) -> Response:
        """Stage a photo that already lives on the media endpoint."""
        with self.locks.hold(session_id):
            try:
                usess = self.session_store.fetch_by_id(session_id)
            except StoreError as e:
                logger.error(f"Failed to fetch session {session_id}: {e}")
                return error_response(e)

            location = Location(lat=parse_coordinate(lat), lng=parse_coordinate(lng))
            usess = usess.with_photo(url, published, location)

            try:
                self.session_store.create(usess)
            except StoreError as e:
                logger.error(f"Failed to save session {session_id}: {e}")
                return error_response(e)

        logger.info(f"Gallery media staged: session={session_id}, url={url}")
        return redirect(COMPOSER_PATH)

    def add_location(
        self,
        session_id: str,
        locality: str,
        region: str,
        country: str,
        lat: Any,
        lng: Any,
    ) -> Response:
        """Replace the composer's location. Unparseable coordinates become 0."""
        with self.locks.hold(session_id):
            try:
                usess = self.session_store.fetch_by_id(session_id)
            except StoreError as e:
                logger.error(f"Failed to fetch session {session_id}: {e}")
                return error_response(e)

            location = Location(
                locality=locality or "",
                region=region or "",
                country=country or "",
                lat=parse_coordinate(lat),
                lng=parse_coordinate(lng),
            )
            usess = usess.with_location(location)

            try:
                self.session_store.create(usess)
            except StoreError as e:
                logger.error(f"Failed to save session {session_id}: {e}")
                return error_response(e)

        logger.info(f"Location set: session={session_id}, location={location.to_human()!r}")
        return redirect(COMPOSER_PATH)

    def submit_post(self, session_id: str, content: str, h: str) -> Response:
        """Send the composed post to the Micropub endpoint.

        The composer is cleared only when the endpoint answers 2xx; any
        other answer is passed back with the staged values kept so the
        user can retry.
        """
        with self.locks.hold(session_id):
            try:
                usess = self.session_store.fetch_by_id(session_id)
            except StoreError as e:
                logger.error(f"Failed to fetch session {session_id}: {e}")
                return error_response(e)

            form = build_post_form(usess, content, h)
            logger.info(f"Built micropub request: session={session_id}, fields={[k for k, _ in form]}")

            try:
                result = self.client.send_request(form, usess.micropub_endpoint, usess.access_token)
            except TransportError as e:
                logger.error(f"Failed to send micropub request: {e}")
                return error_response(e)

            if not result.ok:
                logger.warning(
                    f"Micropub endpoint rejected post: session={session_id}, "
                    f"status_code={result.status_code}"
                )
                return Response(status_code=result.status_code)

            try:
                self.session_store.create(usess.with_cleared_composer())
            except StoreError as e:
                logger.error(f"Post created but failed to clear composer for {session_id}: {e}")

        logger.info(f"Post submitted: session={session_id}, location={result.location}")
        return Response(status_code=result.status_code, headers={"Location": result.location})

    def show_composer(self, session_id: str) -> Dict[str, Any]:
        """View data for the composer page.

        Raises:
            StoreError: If the session cannot be read.
        """
        usess = self.session_store.fetch_by_id(session_id)
        composer = usess.composer_data
        return {
            "photos": [p.to_dict() for p in composer.photos],
            "published": composer.published,
            "location": composer.location.to_human(),
            "user": usess.hcard.to_dict(),
        }

    def search_locations(self, session_id: str, query: str) -> List[Location]:
        """Geocode ``query`` for a logged in user.

        Raises:
            StoreError: If the session cannot be read.
        """
        self.session_store.fetch_by_id(session_id)
        if not query:
            return []
        locations = self.geocoder.lookup(query)
        logger.info(f"Location search returned {len(locations)} result(s)")
        return locations


def build_post_form(usess: UserSession, content: str, h: str) -> List[Tuple[str, str]]:
    """Form fields for a Micropub create request, in wire order."""
    composer = usess.composer_data
    form = [("content", content), ("h", h)]
    form.extend(("photo", photo.url) for photo in composer.photos)
    form.append(("published", composer.published or _now()))
    if composer.location.has_lat_lng():
        form.append(("location", composer.location.to_geo_url()))
    return form
