"""Configuration models and YAML loader for the registry poller."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


class SourceConfig(BaseModel):
    """Where the registry lives and how to talk to it."""

    base_url: str = "http://27.100.26.138"
    landing_path: str = "/death-certificate"
    fetch_path: str = "/death/fetch-certificates"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
    timeout_s: float = Field(default=30.0, ge=1.0)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not v.strip():
            msg = "base_url must not be empty"
            raise ValueError(msg)
        return v.strip().rstrip("/")

    @property
    def landing_url(self) -> str:
        return f"{self.base_url}{self.landing_path}"

    @property
    def fetch_url(self) -> str:
        return f"{self.base_url}{self.fetch_path}"


class PollingConfig(BaseModel):
    """Pacing policy shared by every job in the process."""

    unit_delay_s: float = Field(default=1.0, ge=0.0)
    retry_delay_s: float = Field(default=5.0, ge=0.0)
    default_interval_minutes: float = Field(default=60.0, gt=0.0)


class MatchingConfig(BaseModel):
    """Acceptance floors for approximate name matching (0-100).

    ``substring_floor`` and ``token_floor`` gate the two scoring branches of
    the matcher; ``min_score`` is applied to the best match of a record.
    Lowering ``min_score`` (e.g. to 30) gives a broad search.
    """

    substring_floor: float = Field(default=50.0, ge=0.0, le=100.0)
    token_floor: float = Field(default=60.0, ge=0.0, le=100.0)
    min_score: float = Field(default=60.0, ge=0.0, le=100.0)


class BrowserConfig(BaseModel):
    """Optional browser used to read client-rendered verification codes."""

    enabled: bool = False
    headless: bool = True
    timeout_ms: int = Field(default=30000, ge=1000)


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/jobs.db"


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    source: SourceConfig = Field(default_factory=SourceConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
