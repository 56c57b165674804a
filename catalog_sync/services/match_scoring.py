"""
Match Scoring Service for BoardGameGeek Lookups

Finds the BGG record that best fits a catalog item.

Problem:
- Square names are often abbreviated ("Catan 5-6 Ext")
- BGG search returns every expansion, reprint and fan edition of a title
- A wrong match puts the wrong box art on a product

Strategy:
1. Resolve the UPC (if any) to a full product title and search with that
2. Score candidates: +10 exact name, +5 name contains query, +8 year match
3. Sort by score desc, then lower BGG id (older = more canonical)
4. Top 3: require an image, and a publisher match when we know the publisher
5. Ranks 4-5: image only
6. If the UPC title found nothing, retry with the catalog name
"""
import dataclasses
import logging
import re
from typing import Dict, List, Optional

from catalog_sync.models import ItemMeta, MetadataDetail, SearchCandidate

logger = logging.getLogger(__name__)

# Scoring weights
EXACT_NAME_SCORE = 10
CONTAINS_NAME_SCORE = 5
YEAR_MATCH_SCORE = 8

# Candidate tiers
VERIFIED_TIER_SIZE = 3   # ranks 1-3: image + publisher check
FALLBACK_TIER_END = 5    # ranks 4-5: image only

_PARENTHETICAL = re.compile(r"\s*\(.*?\)\s*")
_DASH_BOARD_GAME = re.compile(r"\s*-\s*board\s+game\b\s*", re.IGNORECASE)
_BOARD_GAME = re.compile(r"\s*\bboard\s+game\b\s*", re.IGNORECASE)


def clean_upc_title(title: str) -> str:
    """
    Strip retail noise from a UPC product title.

    - Remove parenthetical text ("(2015 Edition)")
    - Remove "- Board Game" / "Board Game"
    - Normalize whitespace

    Applied until stable, so cleaning an already-clean title changes nothing.
    """
    if not title:
        return ""

    current = title
    while True:
        cleaned = _PARENTHETICAL.sub(" ", current)
        cleaned = _DASH_BOARD_GAME.sub(" ", cleaned)
        cleaned = _BOARD_GAME.sub(" ", cleaned)
        cleaned = " ".join(cleaned.split())
        if cleaned == current:
            return cleaned
        current = cleaned


def score_candidate(candidate: SearchCandidate, query: str, year: Optional[int] = None) -> int:
    """Score one search result against the query and year hint."""
    score = 0
    name = candidate.name.lower()
    wanted = query.lower()

    if name == wanted:
        score += EXACT_NAME_SCORE
    elif wanted in name:
        score += CONTAINS_NAME_SCORE

    if year and candidate.year_published == year:
        score += YEAR_MATCH_SCORE

    return score


def rank_candidates(
    candidates: List[SearchCandidate],
    query: str,
    year: Optional[int] = None,
) -> List[SearchCandidate]:
    """Score and sort: score desc, then external_id asc."""
    scored = [
        dataclasses.replace(c, score=score_candidate(c, query, year))
        for c in candidates
    ]
    scored.sort(key=lambda c: (-c.score, c.external_id))
    return scored


def publisher_matches(detail: MetadataDetail, publisher: str) -> bool:
    """Case-insensitive substring check against the detail's publishers."""
    wanted = publisher.lower()
    return any(wanted in p.lower() for p in detail.publishers)


class MatchEngine:
    """
    Search-and-score matcher.

    Usage:
        engine = MatchEngine(bgg_client, upc_resolver)
        detail = await engine.find_best_match("Catan", ItemMeta(year=1995))
    """

    def __init__(self, metadata, resolver=None):
        self.metadata = metadata
        self.resolver = resolver

    async def find_best_match(
        self,
        name: str,
        hints: Optional[ItemMeta] = None,
    ) -> Optional[MetadataDetail]:
        """
        Return the best BGG detail for a catalog item, or None.

        Lookup errors (AuthError, RateLimitExceeded...) propagate to the caller.
        """
        hints = hints or ItemMeta()
        search_name = name

        if hints.upc and self.resolver is not None:
            logger.info(f"[MATCH] UPC available ({hints.upc}), looking up full title")
            upc_result = await self.resolver.resolve(hints.upc)
            if upc_result and upc_result.title:
                cleaned = clean_upc_title(upc_result.title)
                logger.info(
                    f"[MATCH] UPC resolved: {hints.upc!r} -> {cleaned!r} "
                    f"(brand: {upc_result.brand or 'n/a'})"
                )
                search_name = cleaned or name

        match = await self.search_and_score(search_name, hints)

        if match is None and search_name != name:
            logger.info(
                f"[MATCH] UPC-based search for {search_name!r} failed, "
                f"falling back to catalog name {name!r}"
            )
            match = await self.search_and_score(name, hints)

        if match is None:
            logger.info(f"[MATCH] No match for {name!r}")
        return match

    async def search_and_score(
        self,
        query: str,
        hints: Optional[ItemMeta] = None,
    ) -> Optional[MetadataDetail]:
        """Search BGG, rank the results and verify the leading candidates."""
        hints = hints or ItemMeta()
        results = await self.metadata.search(query)
        if not results:
            return None

        ranked = rank_candidates(results, query, hints.year)
        details: Dict[int, Optional[MetadataDetail]] = {}

        async def _detail(candidate: SearchCandidate) -> Optional[MetadataDetail]:
            if candidate.external_id not in details:
                details[candidate.external_id] = await self.metadata.fetch_detail(candidate.external_id)
            return details[candidate.external_id]

        for candidate in ranked[:VERIFIED_TIER_SIZE]:
            detail = await _detail(candidate)
            if detail is None or not detail.image_url:
                continue
            if hints.publisher and not publisher_matches(detail, hints.publisher):
                logger.debug(
                    f"[MATCH] {candidate.external_id} skipped: publisher {hints.publisher!r} "
                    f"not in {list(detail.publishers)}"
                )
                continue
            logger.info(
                f"[MATCH] {query!r} -> {detail.name!r} (id={detail.external_id}, score={candidate.score})"
            )
            return detail

        for candidate in ranked[VERIFIED_TIER_SIZE:FALLBACK_TIER_END]:
            detail = await _detail(candidate)
            if detail is not None and detail.image_url:
                logger.info(
                    f"[MATCH] {query!r} -> {detail.name!r} (id={detail.external_id}, fallback rank)"
                )
                return detail

        return None
