"""
Resilient HTTP Client for External API Calls

Shared fetch primitive for every outbound call:
- Randomized courtesy delay before each attempt (keeps us under soft limits)
- Exponential backoff with jitter on 429 / 5xx / transport errors
- Hard attempt ceiling, explicit loop (no recursion)
- 401/403 fail immediately with AuthError; they are never retried

Other non-2xx responses (404, 409, 400...) are returned to the caller,
which knows what they mean for its API.

All delay and retry parameters are constructor configuration so tests can
run with zero-delay variants.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlparse

import httpx

from catalog_sync.core.exceptions import AuthError, RateLimitExceeded, UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class CourtesyDelayConfig:
    """Random pause issued before every request attempt."""
    min_delay: float = 0.8   # seconds
    max_delay: float = 1.2   # seconds


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 6             # Total attempts, first one included
    base_delay: float = 2.0           # Base delay in seconds
    exponential_base: float = 2.0     # Exponential backoff multiplier
    jitter: float = 1.0               # Uniform random seconds added to each delay

    # Status codes that should trigger retry (plus any 5xx)
    retryable_status_codes: tuple = (429,)

    # Credentials won't self-heal - never retry these
    auth_status_codes: tuple = (401, 403)


NO_COURTESY_DELAY = CourtesyDelayConfig(min_delay=0.0, max_delay=0.0)


class ResilientHTTPClient:
    """
    Async HTTP client with built-in resilience patterns.

    Usage:
        async with ResilientHTTPClient() as client:
            response = await client.get("https://api.example.com/data")
    """

    def __init__(
        self,
        courtesy_config: Optional[CourtesyDelayConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        default_headers: Optional[Dict[str, str]] = None,
        name: str = "HTTP",
    ):
        self.courtesy_config = courtesy_config or CourtesyDelayConfig()
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.default_headers = default_headers or {}
        self.name = name

        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.default_headers,
                follow_redirects=True,
            )
        return self

    async def close(self):
        """Close the client. Use this when not using context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_host(self, url: str) -> str:
        """Extract host from URL for log context."""
        return urlparse(url).netloc

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Delay before retrying after failed attempt number ``attempt`` (0-based).

        Formula: base * (exp_base ^ attempt) + uniform(0, jitter)
        """
        cfg = self.retry_config
        delay = cfg.base_delay * (cfg.exponential_base ** attempt)
        return delay + random.uniform(0, cfg.jitter)

    def _courtesy_delay(self) -> float:
        cfg = self.courtesy_config
        if cfg.max_delay <= 0:
            return 0.0
        return random.uniform(cfg.min_delay, cfg.max_delay)

    def _is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retry_config.retryable_status_codes or status_code >= 500

    async def request(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """
        Make an HTTP request with full resilience.

        Returns:
            httpx.Response for 2xx and for non-retryable, non-auth statuses

        Raises:
            AuthError: On 401/403 (no retry)
            RateLimitExceeded: Still 429 after max_attempts
            UpstreamError: Still 5xx / transport failure after max_attempts
        """
        if not self._client:
            await self.init()

        host = self._get_host(url)
        cfg = self.retry_config
        max_attempts = max(1, cfg.max_attempts)

        last_status: Optional[int] = None
        last_exception: Optional[Exception] = None

        for attempt in range(max_attempts):
            await asyncio.sleep(self._courtesy_delay())

            try:
                logger.debug(f"[{self.name}] {method} {url} (attempt {attempt + 1}/{max_attempts})")
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_exception = e
                last_status = None
                if attempt + 1 < max_attempts:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"[{self.name}] {host}: {type(e).__name__}, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{max_attempts})"
                    )
                    await asyncio.sleep(delay)
                continue

            if response.status_code in cfg.auth_status_codes:
                logger.error(f"[{self.name}] {host}: {response.status_code} - credential rejected, not retrying")
                raise AuthError(
                    f"{host} rejected credentials ({response.status_code})",
                    status_code=response.status_code,
                )

            if self._is_retryable_status(response.status_code):
                last_status = response.status_code
                last_exception = None
                if attempt + 1 < max_attempts:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"[{self.name}] {response.status_code} on {url} - retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{max_attempts})"
                    )
                    await asyncio.sleep(delay)
                continue

            return response

        # All attempts exhausted
        logger.error(f"[{self.name}] {host}: All {max_attempts} attempts failed")
        if last_status == 429:
            raise RateLimitExceeded(host, max_attempts)
        if last_exception is not None:
            raise UpstreamError(f"Request to {url} failed: {last_exception}") from last_exception
        raise UpstreamError(
            f"Request to {url} failed with {last_status} after {max_attempts} attempts",
            status_code=last_status,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """GET request with resilience."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        """POST request with resilience."""
        return await self.request("POST", url, **kwargs)


# Pre-configured clients for specific APIs

def get_bgg_client(
    courtesy_config: Optional[CourtesyDelayConfig] = None,
    retry_config: Optional[RetryConfig] = None,
) -> ResilientHTTPClient:
    """
    Get client configured for the BoardGameGeek XML API.

    BGG has an undocumented soft limit; every call pays a ~1s courtesy delay.
    """
    from catalog_sync.core.config import settings

    headers = {"Accept": "application/xml"}
    if settings.BGG_API_TOKEN:
        headers["Authorization"] = f"Bearer {settings.BGG_API_TOKEN}"

    return ResilientHTTPClient(
        courtesy_config=courtesy_config or CourtesyDelayConfig(
            min_delay=settings.BGG_COURTESY_DELAY_MIN_SECONDS,
            max_delay=settings.BGG_COURTESY_DELAY_MAX_SECONDS,
        ),
        retry_config=retry_config or RetryConfig(
            max_attempts=settings.BGG_MAX_ATTEMPTS,
            base_delay=settings.BGG_BACKOFF_BASE_SECONDS,
            jitter=settings.BGG_BACKOFF_JITTER_SECONDS,
        ),
        timeout=settings.BGG_TIMEOUT_SECONDS,
        default_headers=headers,
        name="BGG",
    )


def get_square_client() -> ResilientHTTPClient:
    """
    Get client for Square API calls and asset downloads.

    No courtesy delay; auth headers are passed per request so they never
    reach third-party image hosts.
    """
    from catalog_sync.core.config import settings

    return ResilientHTTPClient(
        courtesy_config=NO_COURTESY_DELAY,
        retry_config=RetryConfig(
            max_attempts=4,
            base_delay=1.0,
            jitter=0.5,
        ),
        timeout=settings.SQUARE_TIMEOUT_SECONDS,
        name="Square",
    )


def get_upc_client() -> ResilientHTTPClient:
    """Single-shot client for the UPC lookup (best-effort, no retries)."""
    from catalog_sync.core.config import settings

    return ResilientHTTPClient(
        courtesy_config=NO_COURTESY_DELAY,
        retry_config=RetryConfig(max_attempts=1),
        timeout=settings.UPC_TIMEOUT_SECONDS,
        default_headers={"Accept": "application/json"},
        name="UPC",
    )
