"""
Micropub Module.

Talks to a logged in user's Micropub and media endpoints and stages posts
in the session until they are submitted.

Features:
    - form-encoded post creation with repeated ``photo`` values
    - multipart uploads to the media endpoint
    - paged ``q=source`` / ``q=years`` / ``q=months`` queries
    - composer staging of photos, gallery media and a location
    - media gallery and post list browsing

Usage:
    >>> from micropub import Composer, MicropubClient
    >>> composer = Composer(session_store, MicropubClient(timeout=10))
    >>> response = composer.submit_post(session_id, "Hello", "entry")
"""

from micropub.archive import MediaArchive, PostArchive, list_media, list_posts, post_to_view
from micropub.client import (
    ArchiveMonth,
    ArchiveYear,
    MediaEndpointResponse,
    MediaItem,
    MediaList,
    MicropubClient,
    MicropubResponse,
    Paging,
    PostList,
    UploadedFile,
    UploadError,
)
from micropub.composer import Composer, Geocoder, NullGeocoder, build_post_form

__all__ = [
    "MediaArchive",
    "PostArchive",
    "list_media",
    "list_posts",
    "post_to_view",
    "ArchiveMonth",
    "ArchiveYear",
    "MediaEndpointResponse",
    "MediaItem",
    "MediaList",
    "MicropubClient",
    "MicropubResponse",
    "Paging",
    "PostList",
    "UploadedFile",
    "UploadError",
    "Composer",
    "Geocoder",
    "NullGeocoder",
    "build_post_form",
]
