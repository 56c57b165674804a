"""
Square Catalog Gateway

REST access to the Square Catalog API:
    GET  /v2/catalog/list?types=ITEM|CATEGORY   paged enumeration (cursor)
    GET  /v2/catalog/object/{id}                 single object with version
    POST /v2/catalog/images                      multipart image upload
    POST /v2/catalog/object                      upsert (optimistic version)

Item selection works in one of two modes:
- include: only items in a "game" category (explicit GAME_CATEGORY_IDS,
  otherwise any category whose name contains a game keyword)
- exclude: everything except items in a category whose name contains an
  excluded keyword (drinks, shirts...)

Auth headers are passed per request; the same HTTP client downloads images
from BGG's CDN and those hosts must never see the Square token.
"""
import hashlib
import json
import logging
import re
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from catalog_sync.core.exceptions import (
    ConfigError,
    ConflictError,
    DownloadError,
    NotFoundError,
    SyncBaseError,
    UploadError,
    UpstreamError,
)
from catalog_sync.core.http_client import ResilientHTTPClient, get_square_client
from catalog_sync.models import CatalogItem, CatalogReport, CategoryInfo, ItemMeta

logger = logging.getLogger(__name__)

IMAGE_CAPTION = "Imported from BoardGameGeek"
SAMPLE_LIMIT = 20
INCLUDED_SAMPLE_LIMIT = 30

_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def image_idempotency_key(item_id: str, asset_url: str, external_id: Optional[int] = None) -> str:
    """Stable key so a replayed upload of the same image is deduplicated by Square."""
    raw = f"{item_id}|{external_id if external_id is not None else ''}|{asset_url}"
    return "bgg-img-" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:40]


def description_idempotency_key(item_id: str, version: Any) -> str:
    return f"bgg-desc-{item_id}-{version}"


def image_filename(label: str) -> str:
    safe = _FILENAME_UNSAFE.sub("_", label or "") or "image"
    return f"{safe}.jpg"


def _matches_any(name: str, keywords: Iterable[str]) -> bool:
    lower = (name or "").lower()
    return any(k.lower() in lower for k in keywords if k)


def _item_category_ids(item_data: Dict[str, Any]) -> Set[str]:
    ids: Set[str] = set()
    if item_data.get("category_id"):
        ids.add(item_data["category_id"])
    for category in item_data.get("categories") or []:
        if category.get("id"):
            ids.add(category["id"])
    return ids


def _extract_upc(item_data: Dict[str, Any]) -> Optional[str]:
    """UPC from the first variation that has one."""
    for variation in item_data.get("variations") or []:
        upc = ((variation.get("item_variation_data") or {}).get("upc") or "").strip()
        if upc:
            return upc
    return None


def _extract_meta(obj: Dict[str, Any], upc: Optional[str]) -> ItemMeta:
    """Optional year / publisher from item custom attribute values."""
    year: Optional[int] = None
    publisher: Optional[str] = None

    for attr in (obj.get("custom_attribute_values") or {}).values():
        name = (attr.get("name") or attr.get("key") or "").strip().lower()
        value = attr.get("string_value") or attr.get("number_value")
        if value is None:
            continue
        if name in ("year", "year published") and year is None:
            try:
                year = int(float(value))
            except (TypeError, ValueError):
                logger.debug(f"[Square] Ignoring non-numeric year {value!r} on {obj.get('id')}")
        elif name == "publisher" and publisher is None:
            publisher = str(value).strip() or None

    return ItemMeta(upc=upc, year=year, publisher=publisher)


def _has_description(item_data: Dict[str, Any]) -> bool:
    text = item_data.get("description_html") or item_data.get("description") or ""
    return bool(text.strip())


def _square_error(response) -> Tuple[Optional[str], str]:
    """First (code, detail) from a Square error body."""
    try:
        body = response.json()
    except ValueError:
        body = None
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        first = errors[0]
        return first.get("code"), first.get("detail") or first.get("code") or ""
    return None, response.text[:200]


class SquareCatalogGateway:
    """
    Catalog enumeration and mutation against Square.

    Usage:
        gateway = SquareCatalogGateway()
        items = await gateway.list_items()
        asset_id = await gateway.upload_asset(item.id, detail.image_url, item.name)
    """

    def __init__(
        self,
        http: Optional[ResilientHTTPClient] = None,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        category_mode: Optional[str] = None,
        game_keywords: Optional[List[str]] = None,
        excluded_keywords: Optional[List[str]] = None,
        game_category_ids: Optional[List[str]] = None,
    ):
        from catalog_sync.core.config import settings

        self.http = http or get_square_client()
        self.access_token = settings.SQUARE_ACCESS_TOKEN if access_token is None else access_token
        self.base_url = (base_url or settings.square_base_url).rstrip("/")
        self.api_version = api_version or settings.SQUARE_API_VERSION
        self.category_mode = category_mode or settings.CATEGORY_MODE
        self.game_keywords = list(settings.GAME_CATEGORY_KEYWORDS if game_keywords is None else game_keywords)
        self.excluded_keywords = list(
            settings.EXCLUDED_CATEGORY_KEYWORDS if excluded_keywords is None else excluded_keywords
        )
        self.game_category_ids = list(
            settings.GAME_CATEGORY_IDS if game_category_ids is None else game_category_ids
        )

    async def close(self):
        await self.http.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _headers(self, json_body: bool = True) -> Dict[str, str]:
        if not self.access_token:
            raise ConfigError("Missing SQUARE_ACCESS_TOKEN env var")
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": self.api_version,
            "Accept": "application/json",
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(self, method: str, path: str, json_body: bool = True, **kwargs):
        return await self.http.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers(json_body=json_body),
            **kwargs,
        )

    async def _iter_objects(self, object_type: str) -> AsyncIterator[Dict[str, Any]]:
        """Yield every catalog object of one type, following the cursor."""
        cursor: Optional[str] = None
        page = 0
        while True:
            params = {"types": object_type}
            if cursor:
                params["cursor"] = cursor
            response = await self._request("GET", "/v2/catalog/list", params=params)
            if not response.is_success:
                code, detail = _square_error(response)
                raise UpstreamError(
                    f"[Square] List {object_type} failed: {response.status_code} {detail}",
                    status_code=response.status_code,
                    details={"square_code": code},
                )

            data = response.json()
            page += 1
            for obj in data.get("objects") or []:
                if obj.get("is_deleted"):
                    continue
                yield obj

            cursor = data.get("cursor")
            if not cursor:
                logger.debug(f"[Square] {object_type}: {page} page(s)")
                return

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _classify_category(self, category_id: str, name: str) -> CategoryInfo:
        if self.game_category_ids:
            is_game = category_id in self.game_category_ids
        else:
            is_game = _matches_any(name, self.game_keywords)
        return CategoryInfo(
            id=category_id,
            name=name,
            is_game=is_game,
            is_excluded=_matches_any(name, self.excluded_keywords),
        )

    async def list_categories(self) -> List[CategoryInfo]:
        """All catalog categories, each flagged game / excluded."""
        categories = []
        async for obj in self._iter_objects("CATEGORY"):
            name = (obj.get("category_data") or {}).get("name") or ""
            categories.append(self._classify_category(obj["id"], name))
        return categories

    def _is_selected(self, category_ids: Set[str], game_ids: Set[str], excluded_ids: Set[str]) -> bool:
        if self.category_mode == "exclude":
            return not (category_ids & excluded_ids)
        return bool(category_ids & game_ids)

    @staticmethod
    def _to_catalog_item(obj: Dict[str, Any]) -> CatalogItem:
        item_data = obj.get("item_data") or {}
        return CatalogItem(
            id=obj["id"],
            name=item_data.get("name") or "",
            has_image=bool(item_data.get("image_ids")),
            has_description=_has_description(item_data),
            category_ids=frozenset(_item_category_ids(item_data)),
            meta=_extract_meta(obj, _extract_upc(item_data)),
        )

    async def list_items(self) -> List[CatalogItem]:
        """
        Enumerate catalog items selected by the category mode.

        Raises:
            ConfigError: Access token is not configured
        """
        self._headers()  # fail fast before any request when the token is missing

        categories = await self.list_categories()
        game_ids = {c.id for c in categories if c.is_game}
        excluded_ids = {c.id for c in categories if c.is_excluded}

        if self.category_mode == "exclude":
            logger.info(
                f"[Square] Exclude mode: skipping {len(excluded_ids)} categories "
                f"matching {self.excluded_keywords}"
            )
        else:
            if not game_ids:
                logger.warning(
                    f"[Square] No game categories found. Looked for keywords: "
                    f"{', '.join(self.game_keywords)}"
                )
                return []
            names = [c.name for c in categories if c.is_game]
            logger.info(f"[Square] Game categories: {', '.join(names)}")

        items = []
        async for obj in self._iter_objects("ITEM"):
            item = self._to_catalog_item(obj)
            if self._is_selected(set(item.category_ids), game_ids, excluded_ids):
                items.append(item)

        logger.info(f"[Square] {len(items)} items selected for sync")
        return items

    async def classify_catalog(self) -> CatalogReport:
        """Diagnostic breakdown of how the catalog is filtered for a run."""
        self._headers()

        categories = await self.list_categories()
        game_ids = {c.id for c in categories if c.is_game}
        excluded_ids = {c.id for c in categories if c.is_excluded}
        names = {c.id: c.name for c in categories}

        report = CatalogReport(
            total_categories=len(categories),
            game_categories_found=len(game_ids),
            categories=categories,
        )

        async for obj in self._iter_objects("ITEM"):
            item = self._to_catalog_item(obj)
            report.total_items += 1

            if not item.category_ids:
                report.items_with_no_category += 1
                if len(report.skipped_no_category) < SAMPLE_LIMIT:
                    report.skipped_no_category.append(item.name)
                if self.category_mode != "exclude":
                    continue

            if not self._is_selected(set(item.category_ids), game_ids, excluded_ids):
                report.items_not_in_game_category += 1
                if len(report.skipped_non_game) < SAMPLE_LIMIT:
                    cat_names = ", ".join(sorted(names.get(cid, cid) for cid in item.category_ids))
                    report.skipped_non_game.append(f"{item.name} [{cat_names}]")
                continue

            report.items_in_game_category += 1
            if item.meta.upc:
                report.game_items_with_upc += 1
            else:
                report.game_items_without_upc += 1
                if len(report.skipped_no_upc) < SAMPLE_LIMIT:
                    report.skipped_no_upc.append(item.name)
            if item.has_image:
                report.game_items_already_have_image += 1
            if not item.fully_synced:
                report.would_process += 1

            if len(report.included_items) < INCLUDED_SAMPLE_LIMIT:
                label = f"{item.name} (UPC: {item.meta.upc or 'none'})"
                if item.has_image:
                    label += " [HAS IMAGE]"
                report.included_items.append(label)

        return report

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _download(self, asset_url: str) -> Tuple[bytes, str]:
        try:
            response = await self.http.get(asset_url)
        except SyncBaseError as e:
            raise DownloadError(
                f"Failed to download image: {e.message}",
                status_code=getattr(e, "status_code", None),
            ) from e

        if not response.is_success:
            raise DownloadError(
                f"Failed to download image: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        return response.content, content_type or "image/jpeg"

    async def upload_asset(
        self,
        item_id: str,
        asset_url: str,
        label: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        """
        Download an image and attach it to a catalog item as its primary image.

        Returns:
            The new Square image id

        Raises:
            DownloadError: Image source returned non-2xx
            UploadError: Square rejected the image or returned no id
        """
        self._headers()
        content, content_type = await self._download(asset_url)

        payload = {
            "idempotency_key": idempotency_key or image_idempotency_key(item_id, asset_url),
            "object_id": item_id,
            "image": {
                "type": "IMAGE",
                "id": "#temp_image",
                "image_data": {
                    "name": label,
                    "caption": IMAGE_CAPTION,
                },
            },
            "is_primary": True,
        }
        files = {
            "request": (None, json.dumps(payload).encode("utf-8"), "application/json"),
            "image_file": (image_filename(label), content, content_type),
        }

        response = await self._request("POST", "/v2/catalog/images", json_body=False, files=files)
        if not response.is_success:
            code, detail = _square_error(response)
            raise UploadError(
                f"Square rejected image for {item_id}: {response.status_code} {detail}",
                status_code=response.status_code,
                details={"square_code": code},
            )

        image_id = (response.json().get("image") or {}).get("id")
        if not image_id:
            raise UploadError("Square did not return an image ID")

        logger.info(f"[Square] Uploaded image {image_id} for {item_id}")
        return image_id

    async def update_description(self, item_id: str, html: str) -> None:
        """
        Replace an item's description_html, guarded by its current version.

        Raises:
            NotFoundError: Item no longer exists
            ConflictError: Item changed between read and write
        """
        response = await self._request("GET", f"/v2/catalog/object/{item_id}")
        if response.status_code == 404:
            raise NotFoundError(f"Item {item_id} not found", details={"item_id": item_id})
        if not response.is_success:
            code, detail = _square_error(response)
            raise UpstreamError(
                f"[Square] Read {item_id} failed: {response.status_code} {detail}",
                status_code=response.status_code,
                details={"square_code": code},
            )

        obj = response.json().get("object")
        if not obj or obj.get("is_deleted") or not obj.get("item_data"):
            raise NotFoundError(f"Item {item_id} not found", details={"item_id": item_id})

        version = obj.get("version")
        item_data = dict(obj["item_data"])
        # description_plaintext is read-only; description is derived from description_html
        item_data.pop("description", None)
        item_data.pop("description_plaintext", None)
        item_data["description_html"] = html

        body = {
            "idempotency_key": description_idempotency_key(item_id, version),
            "object": {
                "type": "ITEM",
                "id": item_id,
                "version": version,
                "item_data": item_data,
            },
        }

        response = await self._request("POST", "/v2/catalog/object", json=body)
        if response.is_success:
            logger.info(f"[Square] Updated description for {item_id} (version {version})")
            return

        code, detail = _square_error(response)
        if response.status_code == 409 or code == "VERSION_MISMATCH":
            raise ConflictError(
                f"Item {item_id} changed since version {version}",
                details={"item_id": item_id, "version": version},
            )
        if response.status_code == 404:
            raise NotFoundError(f"Item {item_id} not found", details={"item_id": item_id})
        raise UpstreamError(
            f"[Square] Update {item_id} failed: {response.status_code} {detail}",
            status_code=response.status_code,
            details={"square_code": code},
        )
