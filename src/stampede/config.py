from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STAMPEDE_", env_file=".env", extra="ignore")

    app_name: str = "stampede"

    # Target service root; BASE_URL matches the variable the scenario scripts used
    base_url: str = Field(
        default="http://localhost:8080",
        validation_alias=AliasChoices("STAMPEDE_BASE_URL", "BASE_URL"),
    )

    # Virtual user pool
    reconcile_interval: float = Field(default=0.1, gt=0)  # seconds of run time per tick
    graceful_stop: float = Field(default=30.0, ge=0)

    # HTTP transport
    request_timeout: float = Field(default=60.0, gt=0)
    max_connections: int = Field(default=1000, gt=0)
    max_keepalive_connections: int = Field(default=200, ge=0)
    follow_redirects: bool = True
    verify_tls: bool = True

    # Metrics
    quantile_mode: Literal["exact", "sketch"] = "exact"
    sketch_relative_accuracy: float = Field(default=0.01, gt=0, lt=1)

    # Continuous evaluation of abort_on_fail thresholds
    threshold_check_interval: float = Field(default=2.0, gt=0)

    # Run-scoped random source for endpoint selection
    seed: int | None = None

    # Observability
    log_level: str = "INFO"
    log_json: bool = False

