"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

import logging

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Staging oracle used when OCV_API_BASE_URL is not configured.
FALLBACK_OCV_API_BASE_URL = "https://on-chain-voting-staging-devnet.minaprotocol.network"

# Oracle snapshots are refreshed on this cadence; readers must tolerate this much staleness.
DEFAULT_VOTE_PROCESSING_INTERVAL = 600


class Settings(BaseSettings):
    """fundflow application configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Database
    database_url: str = "sqlite+aiosqlite:///fundflow.db"

    # Environment
    fundflow_env: str = "development"

    # External vote oracle (OCV)
    ocv_api_base_url: str = ""
    ocv_timeout_seconds: float = Field(default=10.0, gt=0)

    # Governance
    min_reviewer_approvals: int = Field(default=3, ge=1)

    # Vote processing job
    vote_processing_enabled: bool = False
    vote_processing_interval_seconds: int = Field(
        default=DEFAULT_VOTE_PROCESSING_INTERVAL, ge=1
    )

    # Logging
    fundflow_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _default_oracle_url(self) -> Settings:
        """Fall back to the staging oracle when no base URL is configured."""
        if not self.ocv_api_base_url:
            if self.fundflow_env == "production":
                logger.warning(
                    "ocv_base_url_unset env=production using_fallback=%s",
                    FALLBACK_OCV_API_BASE_URL,
                )
            self.ocv_api_base_url = FALLBACK_OCV_API_BASE_URL
        self.ocv_api_base_url = self.ocv_api_base_url.rstrip("/")
        return self
