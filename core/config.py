"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ClusterVuln happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. ams_enabled -> AMS_ENABLED). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. AMS enrichment needs client credentials,
      so enabling it without them is a startup failure rather than a 502 on
      the first request.

Layer rule: core/ is the kernel. This module may not import from api/, ams/,
auth/, or vulndb/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("clustervuln.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'clustervuln.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL
    # JSON list in the environment, e.g. ALLOWED_HOSTS='["vulns.example.com"]'
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # AMS (account management service) -- optional cluster enrichment
    # ------------------------------------------------------------------

    ams_enabled: bool = False
    ams_api_url: str = "https://api.openshift.com"
    ams_token_url: str = "https://sso.redhat.com/auth/realms/redhat-external/protocol/openid-connect/token"
    ams_client_id: str = ""
    ams_client_secret: str = ""
    ams_timeout: int = 10
    ams_page_size: int = 100

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    exposed_clusters_rate_limit: str = "100/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_ams(self) -> "Settings":
        """Refuse to start with AMS enabled but no client credentials."""
        if not 1 <= self.ams_page_size <= 500:
            raise ValueError("AMS_PAGE_SIZE must be between 1 and 500.")
        if self.ams_enabled and not (self.ams_client_id and self.ams_client_secret):
            raise ValueError(
                "AMS_CLIENT_ID and AMS_CLIENT_SECRET are required when AMS_ENABLED is true. "
                "Set them in your environment or .env file, or disable AMS enrichment."
            )
        if not self.ams_enabled:
            logger.debug("AMS enrichment disabled -- cluster metadata comes from the database only")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
