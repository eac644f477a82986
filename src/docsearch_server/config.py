"""Centralized configuration for docsearch-server using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strictly typed configuration loaded from environment variables and ``.env``.

    All values are validated at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",  # Ignore extra env vars not defined in model
    )

    # Storage locations
    index_path: Path = Field(default=Path("./data/search-index"), description="Directory holding the search index")
    store_path: Path = Field(default=Path("./data/documents.db"), description="SQLite file of the canonical store")
    store_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite", description="Canonical store implementation (memory is lost on restart)"
    )

    # HTTP server
    host: str = Field(default="0.0.0.0", description="Bind address")  # noqa: S104
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    log_json: bool = Field(default=True, description="Emit structured JSON logs")
    access_log: bool = Field(default=False, description="Keep uvicorn access logs at INFO")

    # Search behaviour
    default_search_limit: int = Field(default=10, ge=1, description="Results returned when no limit is given")
    max_search_limit: int = Field(default=1000, ge=1, description="Upper bound on the requested result count")
    highlight_fragment_size: int = Field(default=150, ge=10, description="Characters per highlighted fragment")
    highlight_pre_tag: str = Field(default="<mark>", description="Inserted before each highlighted term")
    highlight_post_tag: str = Field(default="</mark>", description="Inserted after each highlighted term")

    # Field weights
    title_boost: float = Field(default=3.0, gt=0, description="Weight of title matches")
    tags_boost: float = Field(default=2.0, gt=0, description="Weight of tag matches")
    content_boost: float = Field(default=1.0, gt=0, description="Weight of content matches")

    # Observability
    service_name: str = Field(default="docsearch-server", description="Service name reported to telemetry")
    otlp_endpoint: str | None = Field(default=None, description="OTLP HTTP collector base URL (disabled when unset)")

    @model_validator(mode="after")
    def validate_limits(self) -> Settings:
        """Ensure the default result count does not exceed the maximum."""
        if self.default_search_limit > self.max_search_limit:
            msg = (
                f"DEFAULT_SEARCH_LIMIT ({self.default_search_limit}) cannot exceed "
                f"MAX_SEARCH_LIMIT ({self.max_search_limit})"
            )
            raise ValueError(msg)
        return self
