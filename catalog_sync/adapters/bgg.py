"""
BoardGameGeek (BGG) XML API2 Adapter

Endpoints used:
    Search:  https://boardgamegeek.com/xmlapi2/search?query=NAME&type=boardgame
    Thing:   https://boardgamegeek.com/xmlapi2/thing?id=ID

BGG returns 429 when you hit too many requests and has an undocumented
soft limit, so every call goes through the shared ResilientHTTPClient
(courtesy delay + exponential back-off with jitter).

Responses are XML with attribute-typed elements (name@type, link@type)
and elements that may or may not repeat; everything is normalised to
lists before use.
"""
import html
import logging
from typing import List, Optional

from bs4 import BeautifulSoup

from catalog_sync.core.exceptions import UpstreamError
from catalog_sync.core.http_client import ResilientHTTPClient, get_bgg_client
from catalog_sync.models import MetadataDetail, SearchCandidate

logger = logging.getLogger(__name__)

PUBLISHER_LINK_TYPE = "boardgamepublisher"


def _parse_year(tag) -> Optional[int]:
    """yearpublished@value; BGG uses 0 for unknown."""
    if tag is None:
        return None
    value = (tag.get("value") or "").strip()
    if not value.lstrip("-").isdigit():
        return None
    year = int(value)
    return year or None


def _primary_name(item) -> str:
    """Prefer name[@type=primary], else the first name."""
    names = item.find_all("name", recursive=False)
    if not names:
        return ""
    primary = next((n for n in names if n.get("type") == "primary"), names[0])
    return primary.get("value") or ""


def _text_or_none(tag) -> Optional[str]:
    if tag is None:
        return None
    text = tag.get_text().strip()
    return text or None


def description_to_html(text: Optional[str]) -> Optional[str]:
    """
    Convert a BGG description to simple HTML paragraphs.

    BGG descriptions are plain text with HTML entities escaped a second time
    (``&amp;mdash;``) and newlines encoded as ``&#10;``.
    """
    if not text:
        return None
    plain = html.unescape(text).replace("\r\n", "\n")
    paragraphs = [p.strip() for p in plain.split("\n") if p.strip()]
    if not paragraphs:
        return None
    return "".join(f"<p>{html.escape(p, quote=False)}</p>" for p in paragraphs)


def parse_search_results(xml) -> List[SearchCandidate]:
    """Parse /search XML (str or bytes) into candidates (score left at 0)."""
    soup = BeautifulSoup(xml, "xml")
    root = soup.find("items")
    if root is None:
        return []

    results = []
    for item in root.find_all("item", recursive=False):
        item_id = (item.get("id") or "").strip()
        if not item_id.isdigit():
            continue
        results.append(SearchCandidate(
            external_id=int(item_id),
            name=_primary_name(item),
            year_published=_parse_year(item.find("yearpublished", recursive=False)),
        ))
    return results


def parse_thing(xml, external_id: int) -> Optional[MetadataDetail]:
    """Parse /thing XML for a single id; None if the item is absent."""
    soup = BeautifulSoup(xml, "xml")
    root = soup.find("items")
    if root is None:
        return None
    item = root.find("item", recursive=False)
    if item is None:
        return None

    publishers = tuple(
        link.get("value") or ""
        for link in item.find_all("link", recursive=False)
        if link.get("type") == PUBLISHER_LINK_TYPE and link.get("value")
    )

    return MetadataDetail(
        external_id=external_id,
        name=_primary_name(item),
        year_published=_parse_year(item.find("yearpublished", recursive=False)),
        image_url=_text_or_none(item.find("image", recursive=False)),
        thumbnail_url=_text_or_none(item.find("thumbnail", recursive=False)),
        description_html=description_to_html(_text_or_none(item.find("description", recursive=False))),
        publishers=publishers,
    )


class BGGClient:
    """
    Metadata repository client.

    Usage:
        client = BGGClient()
        candidates = await client.search("Catan")
        detail = await client.fetch_detail(candidates[0].external_id)
    """

    def __init__(self, http: Optional[ResilientHTTPClient] = None, api_base: Optional[str] = None):
        from catalog_sync.core.config import settings

        self.http = http or get_bgg_client()
        self.api_base = (api_base or settings.BGG_API_BASE).rstrip("/")

    async def close(self):
        await self.http.close()

    async def search(self, query: str) -> List[SearchCandidate]:
        """Search BGG for board games matching ``query``."""
        query = (query or "").strip()
        if not query:
            return []

        response = await self.http.get(
            f"{self.api_base}/search",
            params={"query": query, "type": "boardgame"},
        )
        if not response.is_success:
            raise UpstreamError(
                f"[BGG] Search failed: {response.status_code} for {query!r}",
                status_code=response.status_code,
            )

        results = parse_search_results(response.content)
        logger.debug(f"[BGG] search {query!r} -> {len(results)} results")
        return results

    async def fetch_detail(self, external_id: int) -> Optional[MetadataDetail]:
        """Fetch full details for a single BGG thing (board game)."""
        response = await self.http.get(
            f"{self.api_base}/thing",
            params={"id": str(external_id)},
        )
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise UpstreamError(
                f"[BGG] Thing {external_id} failed: {response.status_code}",
                status_code=response.status_code,
            )
        return parse_thing(response.content, external_id)
