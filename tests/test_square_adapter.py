"""
Tests for the Square catalog gateway (REST via httpx.MockTransport).
"""
import json
import logging

import httpx
import pytest

from catalog_sync.adapters.square import (
    SquareCatalogGateway,
    image_filename,
    image_idempotency_key,
)
from catalog_sync.core.exceptions import (
    AuthError,
    ConfigError,
    ConflictError,
    DownloadError,
    NotFoundError,
    UploadError,
    UpstreamError,
)

SQUARE = "https://square.test"
IMAGE_URL = "https://cf.geekdo-images.com/catan.jpg"

CATEGORIES = {
    "objects": [
        {"type": "CATEGORY", "id": "CAT_GAMES", "category_data": {"name": "Board Games"}},
        {"type": "CATEGORY", "id": "CAT_DRINKS", "category_data": {"name": "Drinks"}},
    ]
}

ITEMS_PAGE_1 = {
    "objects": [
        {
            "type": "ITEM",
            "id": "ITEM_CATAN",
            "custom_attribute_values": {
                "Square:abc": {"name": "Year", "number_value": "1995", "type": "NUMBER"},
                "Square:def": {"name": "Publisher", "string_value": "Catan Studio", "type": "STRING"},
            },
            "item_data": {
                "name": "Catan",
                "category_id": "CAT_GAMES",
                "variations": [
                    {"id": "V1", "item_variation_data": {"name": "Regular"}},
                    {"id": "V2", "item_variation_data": {"name": "Boxed", "upc": "029877030712"}},
                ],
            },
        },
        {
            "type": "ITEM",
            "id": "ITEM_COLA",
            "item_data": {"name": "Cola", "categories": [{"id": "CAT_DRINKS"}]},
        },
    ],
    "cursor": "page-2",
}

ITEMS_PAGE_2 = {
    "objects": [
        {
            "type": "ITEM",
            "id": "ITEM_AZUL",
            "item_data": {
                "name": "Azul",
                "categories": [{"id": "CAT_GAMES"}],
                "image_ids": ["IMG_OLD"],
                "description_html": "<p>Tiles</p>",
            },
        },
        {
            "type": "ITEM",
            "id": "ITEM_GIFT",
            "item_data": {"name": "Gift Card"},
        },
        {
            "type": "ITEM",
            "id": "ITEM_GONE",
            "is_deleted": True,
            "item_data": {"name": "Deleted", "category_id": "CAT_GAMES"},
        },
    ]
}


def make_gateway(http, **overrides) -> SquareCatalogGateway:
    options = dict(
        http=http,
        access_token="sq-token",
        base_url=SQUARE,
        api_version="2024-10-17",
        category_mode="include",
        game_keywords=["board game", "games"],
        excluded_keywords=["drinks", "shirts"],
        game_category_ids=[],
    )
    options.update(overrides)
    return SquareCatalogGateway(**options)


def catalog_handler(seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/v2/catalog/list":
            if request.url.params["types"] == "CATEGORY":
                return httpx.Response(200, json=CATEGORIES)
            if request.url.params.get("cursor") == "page-2":
                return httpx.Response(200, json=ITEMS_PAGE_2)
            return httpx.Response(200, json=ITEMS_PAGE_1)
        return httpx.Response(500)

    return handler


class TestListCategories:
    @pytest.mark.asyncio
    async def test_keyword_classification(self, http_factory):
        gateway = make_gateway(http_factory(catalog_handler()))

        categories = {c.id: c for c in await gateway.list_categories()}

        assert categories["CAT_GAMES"].is_game and not categories["CAT_GAMES"].is_excluded
        assert categories["CAT_DRINKS"].is_excluded and not categories["CAT_DRINKS"].is_game

    @pytest.mark.asyncio
    async def test_explicit_ids(self, http_factory):
        gateway = make_gateway(http_factory(catalog_handler()), game_category_ids=["CAT_DRINKS"])

        categories = {c.id: c for c in await gateway.list_categories()}

        assert categories["CAT_DRINKS"].is_game
        assert not categories["CAT_GAMES"].is_game


class TestListItems:
    @pytest.mark.asyncio
    async def test_include_mode_pages_and_extracts(self, http_factory):
        seen = []
        gateway = make_gateway(http_factory(catalog_handler(seen)))

        items = await gateway.list_items()

        assert [i.id for i in items] == ["ITEM_CATAN", "ITEM_AZUL"]
        catan, azul = items
        assert catan.meta.upc == "029877030712"
        assert catan.meta.year == 1995
        assert catan.meta.publisher == "Catan Studio"
        assert not catan.has_image and not catan.has_description
        assert azul.has_image and azul.has_description
        assert azul.fully_synced

        assert seen[0].headers["Authorization"] == "Bearer sq-token"
        assert seen[0].headers["Square-Version"] == "2024-10-17"
        assert [r.url.params.get("cursor") for r in seen[1:]] == [None, "page-2"]

    @pytest.mark.asyncio
    async def test_exclude_mode_keeps_everything_but_excluded(self, http_factory):
        gateway = make_gateway(http_factory(catalog_handler()), category_mode="exclude")

        items = await gateway.list_items()

        assert [i.id for i in items] == ["ITEM_CATAN", "ITEM_AZUL", "ITEM_GIFT"]

    @pytest.mark.asyncio
    async def test_explicit_category_ids_override_keywords(self, http_factory):
        gateway = make_gateway(http_factory(catalog_handler()), game_category_ids=["CAT_DRINKS"])

        items = await gateway.list_items()

        assert [i.id for i in items] == ["ITEM_COLA"]

    @pytest.mark.asyncio
    async def test_no_game_category_returns_empty(self, http_factory, caplog):
        gateway = make_gateway(http_factory(catalog_handler()), game_keywords=["tabletop"])

        with caplog.at_level(logging.WARNING, logger="catalog_sync.adapters.square"):
            items = await gateway.list_items()

        assert items == []
        assert "tabletop" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_token_raises_config_error(self, http_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        gateway = make_gateway(http_factory(handler), access_token="")

        with pytest.raises(ConfigError):
            await gateway.list_items()

    @pytest.mark.asyncio
    async def test_rejected_token_raises_auth_error(self, http_factory):
        gateway = make_gateway(http_factory(lambda request: httpx.Response(401)))

        with pytest.raises(AuthError):
            await gateway.list_items()


class TestClassifyCatalog:
    @pytest.mark.asyncio
    async def test_report_counts(self, http_factory):
        gateway = make_gateway(http_factory(catalog_handler()))

        report = await gateway.classify_catalog()
        data = report.to_dict()

        assert data["summary"]["totalItems"] == 4
        assert data["summary"]["totalCategories"] == 2
        assert data["summary"]["gameCategoriesFound"] == 1
        assert data["summary"]["itemsWithNoCategory"] == 1
        assert data["summary"]["itemsInGameCategory"] == 2
        assert data["summary"]["itemsNotInGameCategory"] == 1
        assert data["summary"]["gameItemsWithUpc"] == 1
        assert data["summary"]["gameItemsAlreadyHaveImage"] == 1
        assert data["summary"]["wouldProcess"] == 1
        assert data["samples"]["skippedNonGame"] == ["Cola [Drinks]"]
        assert "Azul (UPC: none) [HAS IMAGE]" in data["samples"]["includedItems"]
        assert {"id": "CAT_GAMES", "name": "Board Games", "isGame": True, "isExcluded": False} in data["allCategories"]


class TestUploadAsset:
    @pytest.mark.asyncio
    async def test_downloads_then_uploads_multipart(self, http_factory):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.host == "cf.geekdo-images.com":
                return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})
            assert request.url.path == "/v2/catalog/images"
            return httpx.Response(200, json={"image": {"id": "IMG_NEW", "type": "IMAGE"}})

        gateway = make_gateway(http_factory(handler))
        key = image_idempotency_key("ITEM_CATAN", IMAGE_URL, 13)

        asset_id = await gateway.upload_asset("ITEM_CATAN", IMAGE_URL, "Catan (5th Ed)", idempotency_key=key)

        assert asset_id == "IMG_NEW"
        download, upload = seen
        assert "Authorization" not in download.headers
        assert upload.headers["Authorization"] == "Bearer sq-token"
        assert upload.headers["Content-Type"].startswith("multipart/form-data")
        body = upload.content
        assert b'filename="Catan__5th_Ed_.jpg"' in body
        assert b"\xff\xd8jpeg" in body
        assert b"Imported from BoardGameGeek" in body
        assert key.encode() in body
        assert b'"object_id": "ITEM_CATAN"' in body

    @pytest.mark.asyncio
    async def test_download_404_raises_download_error(self, http_factory):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.host)
            return httpx.Response(404)

        gateway = make_gateway(http_factory(handler))

        with pytest.raises(DownloadError) as exc_info:
            await gateway.upload_asset("ITEM_CATAN", IMAGE_URL, "Catan")

        assert exc_info.value.status_code == 404
        assert not exc_info.value.retryable
        assert calls == ["cf.geekdo-images.com"]

    @pytest.mark.asyncio
    async def test_rejected_upload_raises_upload_error(self, http_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cf.geekdo-images.com":
                return httpx.Response(200, content=b"img")
            return httpx.Response(400, json={"errors": [{"code": "INVALID_VALUE", "detail": "bad image"}]})

        gateway = make_gateway(http_factory(handler))

        with pytest.raises(UploadError) as exc_info:
            await gateway.upload_asset("ITEM_CATAN", IMAGE_URL, "Catan")

        assert exc_info.value.status_code == 400
        assert "bad image" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_image_id_raises_upload_error(self, http_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cf.geekdo-images.com":
                return httpx.Response(200, content=b"img")
            return httpx.Response(200, json={})

        gateway = make_gateway(http_factory(handler))

        with pytest.raises(UploadError, match="did not return an image ID"):
            await gateway.upload_asset("ITEM_CATAN", IMAGE_URL, "Catan")

    def test_filename_sanitised(self):
        assert image_filename("Ticket to Ride: Europe") == "Ticket_to_Ride__Europe.jpg"

    def test_idempotency_key_is_deterministic(self):
        first = image_idempotency_key("ITEM_CATAN", IMAGE_URL, 13)
        assert first == image_idempotency_key("ITEM_CATAN", IMAGE_URL, 13)
        assert first != image_idempotency_key("ITEM_CATAN", IMAGE_URL, 14)
        assert first.startswith("bgg-img-")
        assert len(first) == len("bgg-img-") + 40


def object_response(version=3):
    return {
        "object": {
            "type": "ITEM",
            "id": "ITEM_CATAN",
            "version": version,
            "item_data": {
                "name": "Catan",
                "description": "old",
                "description_plaintext": "old",
                "category_id": "CAT_GAMES",
            },
        }
    }


class TestUpdateDescription:
    @pytest.mark.asyncio
    async def test_upserts_with_read_version(self, http_factory):
        posted = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                assert request.url.path == "/v2/catalog/object/ITEM_CATAN"
                return httpx.Response(200, json=object_response(version=3))
            posted.append(json.loads(request.content))
            return httpx.Response(200, json={"catalog_object": {"id": "ITEM_CATAN", "version": 4}})

        gateway = make_gateway(http_factory(handler))
        await gateway.update_description("ITEM_CATAN", "<p>New</p>")

        body = posted[0]
        assert body["idempotency_key"] == "bgg-desc-ITEM_CATAN-3"
        assert body["object"]["version"] == 3
        item_data = body["object"]["item_data"]
        assert item_data["description_html"] == "<p>New</p>"
        assert item_data["name"] == "Catan"
        assert "description" not in item_data
        assert "description_plaintext" not in item_data

    @pytest.mark.asyncio
    async def test_version_conflict_409(self, http_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=object_response(version=3))
            return httpx.Response(409, json={"errors": [{"code": "CONFLICT", "detail": "version 4 exists"}]})

        gateway = make_gateway(http_factory(handler))

        with pytest.raises(ConflictError) as exc_info:
            await gateway.update_description("ITEM_CATAN", "<p>New</p>")
        assert exc_info.value.details["version"] == 3

    @pytest.mark.asyncio
    async def test_version_mismatch_error_code(self, http_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=object_response(version=3))
            return httpx.Response(400, json={"errors": [{"code": "VERSION_MISMATCH", "detail": "stale"}]})

        gateway = make_gateway(http_factory(handler))

        with pytest.raises(ConflictError):
            await gateway.update_description("ITEM_CATAN", "<p>New</p>")

    @pytest.mark.asyncio
    async def test_missing_item_raises_not_found(self, http_factory):
        gateway = make_gateway(http_factory(lambda request: httpx.Response(404)))

        with pytest.raises(NotFoundError):
            await gateway.update_description("ITEM_CATAN", "<p>New</p>")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_body", [["bad request"], "bad request", {"errors": "bad"}])
    async def test_non_object_error_body_raises_upstream_error(self, http_factory, error_body):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json=object_response(version=3))
            return httpx.Response(400, json=error_body)

        gateway = make_gateway(http_factory(handler))

        with pytest.raises(UpstreamError) as exc_info:
            await gateway.update_description("ITEM_CATAN", "<p>New</p>")
        assert exc_info.value.details["square_code"] is None
