"""
Pytest configuration and fixtures for catalog sync tests.
"""
import os
from typing import Callable, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["SQUARE_ACCESS_TOKEN"] = "test-square-token"
os.environ["SQUARE_ENVIRONMENT"] = "sandbox"
os.environ["BGG_API_TOKEN"] = ""
os.environ["ARQ_REDIS_URL"] = ""
os.environ["JOB_SIGNING_KEY"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SYNC_RETRY_DELAY_SECONDS"] = "0"

from catalog_sync.core.http_client import NO_COURTESY_DELAY, ResilientHTTPClient, RetryConfig  # noqa: E402
from catalog_sync.models import CatalogItem, ItemMeta, MetadataDetail  # noqa: E402


def zero_delay_retry(max_attempts: int = 6) -> RetryConfig:
    return RetryConfig(max_attempts=max_attempts, base_delay=0.0, jitter=0.0)


@pytest.fixture
def http_factory() -> Callable[..., ResilientHTTPClient]:
    """
    Build a ResilientHTTPClient backed by httpx.MockTransport, with no delays.

    Usage:
        client = http_factory(handler, max_attempts=3)
    """
    created: List[ResilientHTTPClient] = []

    def _make(handler, max_attempts: int = 6, name: str = "TEST") -> ResilientHTTPClient:
        client = ResilientHTTPClient(
            courtesy_config=NO_COURTESY_DELAY,
            retry_config=zero_delay_retry(max_attempts),
            name=name,
        )
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        created.append(client)
        return client

    return _make


@pytest.fixture
def catan_item() -> CatalogItem:
    return CatalogItem(
        id="ITEM_CATAN",
        name="Catan",
        has_image=False,
        has_description=False,
        category_ids=frozenset({"CAT_GAMES"}),
        meta=ItemMeta(year=1995),
    )


@pytest.fixture
def catan_detail() -> MetadataDetail:
    return MetadataDetail(
        external_id=13,
        name="Catan",
        year_published=1995,
        image_url="https://cf.geekdo-images.com/catan.jpg",
        thumbnail_url="https://cf.geekdo-images.com/catan_t.jpg",
        description_html="<p>Trade, build, settle.</p>",
        publishers=("KOSMOS", "Catan Studio"),
    )


@pytest.fixture
def make_items() -> Callable[..., List[CatalogItem]]:
    def _make(count: int, prefix: str = "Game") -> List[CatalogItem]:
        return [
            CatalogItem(id=f"ITEM_{i}", name=f"{prefix} {i}", category_ids=frozenset({"CAT_GAMES"}))
            for i in range(count)
        ]

    return _make


@pytest.fixture
def mock_catalog() -> AsyncMock:
    """Mock SquareCatalogGateway."""
    catalog = AsyncMock()
    catalog.list_items = AsyncMock(return_value=[])
    catalog.upload_asset = AsyncMock(return_value="IMG_1")
    catalog.update_description = AsyncMock(return_value=None)
    catalog.classify_catalog = AsyncMock()
    catalog.close = AsyncMock()
    return catalog


@pytest.fixture
def mock_matcher() -> AsyncMock:
    """Mock MatchEngine."""
    matcher = AsyncMock()
    matcher.find_best_match = AsyncMock(return_value=None)
    return matcher


@pytest.fixture
def sync_deps(mock_catalog, mock_matcher):
    """SyncDependencies wired to mocks."""
    from catalog_sync.jobs.sync_images import SyncDependencies

    metadata = MagicMock()
    metadata.close = AsyncMock()
    resolver = MagicMock()
    resolver.close = AsyncMock()
    return SyncDependencies(
        catalog=mock_catalog,
        metadata=metadata,
        resolver=resolver,
        matcher=mock_matcher,
    )


@pytest.fixture
def anyio_backend():
    return "asyncio"
