from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoadPaceSettings(BaseSettings):
    """Process-wide defaults, overridable through ``LOADPACE_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="LOADPACE_", extra="ignore")

    # Requests
    default_timeout: float = Field(default=30.0, gt=0)

    # Run lifecycle
    graceful_stop: float = Field(default=30.0, ge=0)
    evaluation_interval: float = Field(default=1.0, gt=0)

    # Metrics
    histogram_accuracy: float = Field(default=0.01, gt=0, lt=1)

    # Output
    log_level: str = Field(default="WARNING")
    output_dir: str = Field(default="loadpace_results")

    # Credentials
    tokens: str = Field(default="")  # comma-separated bearer tokens

    def token_list(self) -> List[str]:
        return [t.strip() for t in self.tokens.split(",") if t.strip()]
