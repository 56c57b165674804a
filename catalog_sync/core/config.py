"""
Application configuration

All settings come from the environment (or a local .env file).
Credentials have empty defaults so the HTTP surface can start and report
what is missing; catalog operations raise ConfigError when the Square
token is absent.
"""
import json
import logging
from typing import List, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_GAME_CATEGORY_KEYWORDS = [
    "board game",
    "card game",
    "board games",
    "card games",
    "tabletop",
    "table top",
    "games",
]

DEFAULT_EXCLUDED_CATEGORY_KEYWORDS = [
    "drinks",
    "shirts",
]


def _parse_str_list(v, default: List[str]) -> List[str]:
    """Accept a JSON array or a comma-separated string."""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if not v.strip():
            return list(default)
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [part.strip() for part in v.split(",") if part.strip()]
    return v


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # App
    APP_NAME: str = "Square BGG Image Sync"
    ENVIRONMENT: str = "development"

    # Square Catalog API
    SQUARE_ACCESS_TOKEN: str = ""
    SQUARE_ENVIRONMENT: str = "sandbox"  # "sandbox" | "production"
    SQUARE_API_VERSION: str = "2024-10-17"
    SQUARE_TIMEOUT_SECONDS: float = 30.0

    # BoardGameGeek XML API2
    BGG_API_BASE: str = "https://boardgamegeek.com/xmlapi2"
    BGG_API_TOKEN: str = ""
    BGG_TIMEOUT_SECONDS: float = 30.0

    # Courtesy delay before every BGG call (undocumented soft limit)
    BGG_COURTESY_DELAY_MIN_SECONDS: float = 0.8
    BGG_COURTESY_DELAY_MAX_SECONDS: float = 1.2

    # Backoff on 429 / 5xx: base * 2^attempt + uniform(0, jitter)
    BGG_BACKOFF_BASE_SECONDS: float = 2.0
    BGG_BACKOFF_JITTER_SECONDS: float = 1.0
    BGG_MAX_ATTEMPTS: int = 6

    # UPCitemdb trial endpoint (100 lookups/day, no key)
    UPC_LOOKUP_URL: str = "https://api.upcitemdb.com/prod/trial/lookup"
    UPC_TIMEOUT_SECONDS: float = 15.0

    # Category classification
    CATEGORY_MODE: str = "include"  # "include" game categories | "exclude" listed categories
    GAME_CATEGORY_KEYWORDS: Union[str, List[str]] = DEFAULT_GAME_CATEGORY_KEYWORDS
    EXCLUDED_CATEGORY_KEYWORDS: Union[str, List[str]] = DEFAULT_EXCLUDED_CATEGORY_KEYWORDS
    GAME_CATEGORY_IDS: Union[str, List[str]] = []

    @field_validator("GAME_CATEGORY_KEYWORDS", mode="before")
    @classmethod
    def parse_game_keywords(cls, v):
        return _parse_str_list(v, DEFAULT_GAME_CATEGORY_KEYWORDS)

    @field_validator("EXCLUDED_CATEGORY_KEYWORDS", mode="before")
    @classmethod
    def parse_excluded_keywords(cls, v):
        return _parse_str_list(v, DEFAULT_EXCLUDED_CATEGORY_KEYWORDS)

    @field_validator("GAME_CATEGORY_IDS", mode="before")
    @classmethod
    def parse_category_ids(cls, v):
        return _parse_str_list(v, [])

    @field_validator("CATEGORY_MODE")
    @classmethod
    def check_category_mode(cls, v):
        v = v.lower()
        if v not in ("include", "exclude"):
            raise ValueError("CATEGORY_MODE must be 'include' or 'exclude'")
        return v

    # Job orchestration
    SYNC_BATCH_SIZE: int = 100
    SYNC_CONCURRENCY: int = 3
    SYNC_WORKER_RETRIES: int = 2
    SYNC_RETRY_DELAY_SECONDS: float = 5.0
    AUTH_FAILURE_THRESHOLD: int = 10

    # Job Queue (ARQ) - empty means run workers inline in this process
    ARQ_REDIS_URL: str = ""
    ARQ_JOB_TIMEOUT_SECONDS: int = 300

    # Shared secret for the job webhook entry point
    JOB_SIGNING_KEY: str = ""

    # Rate limiting on the trigger surface
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/minute"
    RATE_LIMIT_TRIGGER: str = "5/minute"
    TRUST_PROXY_HEADERS: bool = True  # behind the hosting platform's proxy

    @property
    def square_base_url(self) -> str:
        if self.SQUARE_ENVIRONMENT.lower() == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"


settings = Settings()

