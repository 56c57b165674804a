"""
UPC Barcode Lookup

Uses the UPCitemdb.com free trial API to resolve a UPC/EAN barcode to a
full product title. No API key required; the trial endpoint allows about
100 lookups/day. The limit is not enforced here: going over it simply
produces empty results.

Endpoint: https://api.upcitemdb.com/prod/trial/lookup?upc=BARCODE

Resolution is best-effort. Every failure (non-2xx, empty result, bad JSON,
network error) is logged and returned as None so it can never abort a run.
"""
import logging
from typing import Optional

import httpx

from catalog_sync.core.exceptions import SyncBaseError
from catalog_sync.core.http_client import ResilientHTTPClient, get_upc_client
from catalog_sync.models import UpcLookupResult

logger = logging.getLogger(__name__)


class UpcResolver:
    """Resolve a barcode to a descriptive title."""

    def __init__(self, http: Optional[ResilientHTTPClient] = None, lookup_url: Optional[str] = None):
        from catalog_sync.core.config import settings

        self.http = http or get_upc_client()
        self.lookup_url = lookup_url or settings.UPC_LOOKUP_URL

    async def close(self):
        await self.http.close()

    async def resolve(self, upc: str) -> Optional[UpcLookupResult]:
        """
        Look up a UPC/EAN barcode and return the product title.

        Returns None if the barcode is not found or the service is unavailable.
        """
        code = (upc or "").strip()
        if not code:
            return None

        try:
            response = await self.http.get(self.lookup_url, params={"upc": code})
        except (SyncBaseError, httpx.HTTPError) as e:
            logger.warning(f"[UPC] Error looking up {code}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"[UPC] Lookup failed for {code}: {response.status_code} {response.reason_phrase}")
            return None

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"[UPC] Invalid JSON for {code}: {e}")
            return None

        items = data.get("items") if isinstance(data, dict) else None
        if not items or not isinstance(items, list):
            logger.warning(f"[UPC] No results for barcode {code}")
            return None

        item = items[0] or {}
        return UpcLookupResult(
            title=item.get("title") or "",
            brand=item.get("brand") or None,
            description=item.get("description") or None,
        )
