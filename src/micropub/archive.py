"""
Archive browsing for the media gallery and the post list.

The media endpoint groups uploads by year and month. ``list_media`` fetches
the years, then the months of the selected (or first) year, then one page
of media for the selected (or first) month. Each query is independent: a
failure is logged and that part of the result is left empty, so the gallery
still renders whatever could be fetched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from micropub.client import ArchiveMonth, ArchiveYear, MediaItem, MicropubClient
from session.errors import TransportError


logger = logging.getLogger(__name__)


@dataclass
class MediaArchive:
    years: List[ArchiveYear] = field(default_factory=list)
    months: List[ArchiveMonth] = field(default_factory=list)
    media: List[MediaItem] = field(default_factory=list)
    after: str = ""
    current_year: str = ""
    current_month: str = ""


@dataclass
class PostArchive:
    posts: List[Dict[str, Any]] = field(default_factory=list)
    years: List[ArchiveYear] = field(default_factory=list)
    after: str = ""
    has_paging: bool = False


def list_media(
    client: MicropubClient,
    media_endpoint: str,
    access_token: str,
    after: str = "",
    year: str = "",
    month: str = "",
) -> MediaArchive:
    """Years, months and one page of media for the gallery."""
    years = _list_years(client, media_endpoint, access_token)
    current_year = year or (years[0].year if years else "")

    months: List[ArchiveMonth] = []
    if current_year:
        try:
            months = client.query_months_list(media_endpoint, access_token, current_year)
        except TransportError as e:
            logger.info(f"Failed to query months list: year={current_year}, error={e}")
    current_month = month or (months[0].month if months else "")

    media: List[MediaItem] = []
    new_after = ""
    try:
        media_list = client.query_media_list(
            media_endpoint,
            access_token,
            after=after,
            year=current_year,
            month=current_month,
        )
        media = media_list.items
        if media_list.paging is not None:
            new_after = media_list.paging.after
    except TransportError as e:
        logger.info(f"Failed to query media list: {e}")

    return MediaArchive(
        years=years,
        months=months,
        media=media,
        after=new_after,
        current_year=current_year,
        current_month=current_month,
    )


def _list_years(client: MicropubClient, endpoint: str, access_token: str) -> List[ArchiveYear]:
    try:
        return client.query_years_list(endpoint, access_token)
    except TransportError as e:
        logger.info(f"Failed to query years list: endpoint={endpoint}, error={e}")
        return []


def list_posts(
    client: MicropubClient,
    micropub_endpoint: str,
    access_token: str,
    after: str = "",
) -> PostArchive:
    """One page of posts plus the years list.

    Raises:
        TransportError: If either query fails.
    """
    post_list = client.query_post_list(micropub_endpoint, access_token, after)
    years = client.query_years_list(micropub_endpoint, access_token)
    logger.info(f"Years list result: {[y.year for y in years]}")

    next_after = after
    if post_list.paging is not None:
        next_after = post_list.paging.after

    return PostArchive(
        posts=[post_to_view(item) for item in post_list.items],
        years=years,
        after=next_after,
        has_paging=post_list.paging is not None,
    )


SINGLE_VALUE_PROPERTIES = ("uid", "url", "name", "summary", "location", "author", "updated", "rsvp")
LIST_PROPERTIES = (
    "category",
    "photo",
    "video",
    "like-of",
    "bookmark-of",
    "repost-of",
    "syndication",
    "in-reply-to",
    "comment",
)


def post_to_view(item: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten an mf2 JSON item into a simple view dict.

    Single-valued properties take their first string, list properties keep
    every string (``like-of`` becomes ``like_of``), and empty values are
    dropped. ``archive`` is the ``YYYYMM`` of ``published`` (``000000``
    when it is missing or unparseable).
    """
    properties = item.get("properties", {}) or {}
    types = item.get("type", []) or []

    view: Dict[str, Any] = {}
    if types:
        view["type"] = types[0][2:] if types[0].startswith("h-") else types[0]

    for name in SINGLE_VALUE_PROPERTIES:
        value = _first_string(properties.get(name, []))
        if value:
            view[name.replace("-", "_")] = value

    for name in LIST_PROPERTIES:
        values = _strings(properties.get(name, []))
        if values:
            view[name.replace("-", "_")] = values

    content = _content_value(properties.get("content", []))
    if content:
        view["content"] = content

    published = _first_string(properties.get("published", []))
    if published:
        view["published"] = published
    view["archive"] = _year_month(published)
    return view


def _first_string(values: List[Any]) -> str:
    for v in values:
        if isinstance(v, str):
            return v
    return ""


def _strings(values: List[Any]) -> List[str]:
    out = []
    for v in values:
        if isinstance(v, str):
            out.append(v)
        elif isinstance(v, dict) and isinstance(v.get("value"), str):
            out.append(v["value"])
    return out


def _content_value(values: List[Any]) -> str:
    for v in values:
        if isinstance(v, str):
            return v
        if isinstance(v, dict):
            return v.get("html") or v.get("value") or ""
    return ""


def _year_month(published: str) -> str:
    if not published:
        return "000000"
    try:
        parsed = datetime.fromisoformat(published.replace("Z", "+00:00"))
    except ValueError:
        return "000000"
    return parsed.strftime("%Y%m")
