"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for PostureLens happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. registry_url -> REGISTRY_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Cross-field checks after all fields are
      resolved. Batch sizes and fan-out caps must be positive, otherwise the
      evidence engine would either never fetch details or never stop.

The registry session (token, tenant, user) is only read by the CLI. Library
callers hand a pre-authenticated core.models.Session to RegistryClient and
the engine never looks at these fields.

Layer rule: core/ is the kernel. This module may not import from cache/.
"""

import logging
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("posturelens.config")


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    registry_url: str = "http://localhost:8080/api"
    request_timeout: float = 30.0
    # Redirect hops followed by the requests session.
    max_redirects: int = 3

    # Pre-authenticated session for CLI use (empty string = not configured)
    registry_token: str = ""
    registry_tenant: str = ""
    registry_user: str = ""

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    cache_db_path: str = "cache/posturelens.db"
    cache_ttl: int = 300

    compliance_ttl: int = 300
    catalog_ttl: int = 300
    summary_ttl: int = 600
    trends_ttl: int = 600
    controls_ttl: int = 900

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    detail_batch_size: int = 10
    gate_fallback_limit: int = 5
    chain_follow_limit: int = 5
    broad_chain_follow_limit: int = 10
    notes_limit: int = 100
    trend_notes_limit: int = 1000
    fallback_branch: str = "main"

    trend_delta_threshold: float = 5.0
    trend_min_observations: int = 2
    trend_top_changes: int = 5

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("registry_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject non-positive fan-out settings.

        A zero batch size would stall the detail fetch loop, and a zero gate
        or chain limit silently disables a fallback tier.
        """
        for name in (
            "detail_batch_size",
            "gate_fallback_limit",
            "chain_follow_limit",
            "broad_chain_follow_limit",
            "notes_limit",
            "trend_notes_limit",
            "trend_min_observations",
            "trend_top_changes",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name.upper()} must be a positive integer.")
        if not self.fallback_branch:
            raise ValueError("FALLBACK_BRANCH must not be empty.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly.
    """
    return Settings()
