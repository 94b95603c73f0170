"""
IndieAuth endpoint discovery.

Resolves a claimed profile URL into the endpoints the admin needs:

    authorization_endpoint  (mandatory)
    token_endpoint          (optional)
    micropub                (optional)
    media-endpoint          (optional, from the micropub ``q=config`` query)

and the representative h-card of the profile's owner.

Discovery algorithm:
    1. GET the profile URL; anything but 200 is a DiscoveryError
    2. If the response has any HTTP Link header, endpoints come only from
       the Link header
    3. Otherwise walk the parsed HTML depth-first for the first
       <link rel="..." href="..."> with the wanted rel

Usage:
    >>> from indieauth.discovery import discover_endpoints
    >>> endpoints = discover_endpoints("https://example.com/", timeout=10)
    >>> endpoints.authorization_endpoint
    'https://auth.example.com/auth'

References:
    - IndieAuth: https://indieauth.spec.indieweb.org/
    - Micropub configuration: https://www.w3.org/TR/micropub/#configuration
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import mf2py
import requests
from bs4 import BeautifulSoup, Tag
from requests.utils import parse_header_links

from indieauth.errors import DiscoveryError
from session.models import HCard


logger = logging.getLogger(__name__)

USER_AGENT = "micropub-admin IndieAuth client"
MAX_REDIRECTS = 20

AUTHORIZATION_ENDPOINT_REL = "authorization_endpoint"
TOKEN_ENDPOINT_REL = "token_endpoint"
MICROPUB_REL = "micropub"


def _build_session() -> requests.Session:
    """Build a requests Session with discovery-appropriate settings."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    session.max_redirects = MAX_REDIRECTS
    return session


@dataclass
class DiscoveredEndpoints:
    """Everything learned from a profile URL at login."""
    authorization_endpoint: str
    token_endpoint: str = ""
    micropub_endpoint: str = ""
    media_endpoint: str = ""
    hcard: HCard = field(default_factory=HCard)


def discover_endpoints(me: str, timeout: float = 10.0) -> DiscoveredEndpoints:
    """Fetch a profile URL and discover its IndieAuth and Micropub endpoints.

    Args:
        me: The claimed profile URL.
        timeout: Per-request timeout in seconds.

    Returns:
        DiscoveredEndpoints with the author's h-card.

    Raises:
        DiscoveryError: If the profile cannot be fetched, does not answer
            200, or declares no authorization_endpoint.
    """
    with _build_session() as session:
        try:
            response = session.get(
                me,
                headers={"Accept": "text/html"},
                timeout=timeout,
                allow_redirects=True,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch profile for discovery: url={me}, error={e}")
            raise DiscoveryError(f"Failed to fetch {me}: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Profile URL returned a non-200: url={me}, status_code={response.status_code}")
            raise DiscoveryError(f"{me} returned HTTP {response.status_code}")

        html_body = response.text or ""
        soup = BeautifulSoup(html_body, "html.parser")
        headers = response.headers

        authorization_endpoint = _resolve(me, find_endpoint(AUTHORIZATION_ENDPOINT_REL, soup, headers))
        if not authorization_endpoint:
            logger.warning(f"No authorization_endpoint found for {me}")
            raise DiscoveryError(f"Failed to find authorization_endpoint on {me}")

        token_endpoint = _resolve(me, find_endpoint(TOKEN_ENDPOINT_REL, soup, headers))
        micropub_endpoint = _resolve(me, find_endpoint(MICROPUB_REL, soup, headers))

        media_endpoint = ""
        if micropub_endpoint:
            media_endpoint = discover_media_endpoint(micropub_endpoint, timeout=timeout, session=session)

    logger.info(
        f"Discovered endpoints for {me}: authorization_endpoint={authorization_endpoint}, "
        f"token_endpoint={token_endpoint}, micropub={micropub_endpoint}, media={media_endpoint}"
    )

    return DiscoveredEndpoints(
        authorization_endpoint=authorization_endpoint,
        token_endpoint=token_endpoint,
        micropub_endpoint=micropub_endpoint,
        media_endpoint=media_endpoint,
        hcard=fetch_hcard(me, html_body),
    )


def find_endpoint(rel: str, soup: Optional[Tag], headers: Any) -> str:
    """Find the URL for ``rel``, preferring HTTP Link headers over the markup.

    When the response carries any Link header the markup is not consulted,
    even if no header link has the wanted rel.

    Args:
        rel: The link relation to find (e.g. "authorization_endpoint").
        soup: Parsed HTML document.
        headers: Response headers (case-insensitive mapping).

    Returns:
        The href as written (possibly relative), or "" when not found.
    """
    link_header = headers.get("Link", "") if headers is not None else ""
    if link_header:
        for link in parse_header_links(link_header):
            if rel in link.get("rel", "").split():
                return link.get("url", "")
        return ""

    if soup is None:
        return ""
    return _walk_for_link(soup, rel)


def _walk_for_link(node: Tag, rel: str) -> str:
    """Depth-first search of the markup tree for <link rel=rel href=...>."""
    if node.name == "link" and rel in _rel_values(node):
        href = node.get("href")
        if href:
            return href

    for child in node.children:
        if not isinstance(child, Tag):
            continue
        found = _walk_for_link(child, rel)
        if found:
            return found
    return ""


def _rel_values(node: Tag) -> List[str]:
    rel = node.get("rel") or []
    if isinstance(rel, str):
        return rel.split()
    return list(rel)


def _resolve(base_url: str, href: str) -> str:
    if not href:
        return ""
    return urljoin(base_url, href)


def build_config_url(micropub_endpoint: str) -> str:
    """Return ``{micropub}?q=config``, keeping any query already on the endpoint."""
    parsed = urlparse(micropub_endpoint)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != "q"]
    query.append(("q", "config"))
    return urlunparse(parsed._replace(query=urlencode(query)))


def discover_media_endpoint(
    micropub_endpoint: str,
    timeout: float = 10.0,
    session: Optional[requests.Session] = None,
) -> str:
    """Ask the micropub endpoint for its media endpoint.

    Failure is not fatal to login: it is logged and "" is returned.
    """
    if session is None:
        with _build_session() as own_session:
            return discover_media_endpoint(micropub_endpoint, timeout=timeout, session=own_session)

    config_url = build_config_url(micropub_endpoint)
    try:
        response = session.get(
            config_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        config = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.warning(f"Failed to fetch micropub config: url={config_url}, error={e}")
        return ""

    if not isinstance(config, dict):
        logger.warning(f"Micropub config is not an object: url={config_url}")
        return ""

    media_endpoint = config.get("media-endpoint", "")
    if not isinstance(media_endpoint, str):
        return ""
    return _resolve(micropub_endpoint, media_endpoint)


def fetch_hcard(profile_url: str, html_body: str) -> HCard:
    """Extract the representative h-card from a profile page.

    The representative h-card is the one whose ``url`` and ``uid`` both name
    the page itself. No such card is not an error: an empty HCard is returned.
    """
    try:
        parsed = mf2py.parse(doc=html_body, url=profile_url)
    except Exception as e:
        logger.debug(f"Microformats parsing failed for {profile_url}: {e}")
        return HCard()

    for card in _iter_hcards(parsed.get("items", [])):
        properties = card.get("properties", {})
        urls = properties.get("url", [])
        uids = properties.get("uid", [])
        if _contains_url(urls, profile_url) and _contains_url(uids, profile_url):
            return HCard(
                name=_first_str(properties.get("name", [])),
                url=_first_str(urls),
                photo=_first_str(properties.get("photo", [])),
            )

    logger.info(f"No representative h-card found on {profile_url}")
    return HCard()


def _iter_hcards(items: List[Dict[str, Any]]):
    for item in items:
        if "h-card" in item.get("type", []):
            yield item
        yield from _iter_hcards(item.get("children", []))


def _contains_url(values: List[Any], url: str) -> bool:
    target = url.rstrip("/")
    return any(_first_str([v]).rstrip("/") == target for v in values)


def _first_str(values: List[Any]) -> str:
    """Return the first string value from a list, or empty string.

    Image properties may be parsed as {"value": url, "alt": text}.
    """
    for v in values:
        if isinstance(v, str):
            return v
        if isinstance(v, dict) and isinstance(v.get("value"), str):
            return v["value"]
    return ""
