"""Configuration management for the KubeVision agent."""

import math
import re
from pathlib import Path
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

DEFAULT_EXCLUDED_NAMESPACES = "kube-system|monitoring"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """
    Parse a Go-style duration string ("30s", "1m30s", "500ms") into seconds.

    A bare "0" is accepted; any other number must carry a unit.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return sign * total


class Settings(BaseSettings):
    """Agent settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Endpoints
    prom_url: str
    backend_url: str

    # Scheduling
    scrape_interval: float = Field(default=30.0, description="Seconds between cycles")
    query_timeout: float = 10.0
    push_timeout: float = 10.0

    # Queries
    excluded_namespaces: str = DEFAULT_EXCLUDED_NAMESPACES

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @field_validator("prom_url", "backend_url")
    @classmethod
    def _require_address(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("is required but missing")
        return value.rstrip("/")

    @field_validator("scrape_interval", mode="before")
    @classmethod
    def _parse_interval(cls, value):
        if isinstance(value, str):
            value = parse_duration(value)
        if value <= 0:
            raise ValueError("must be a positive duration")
        return value

    @field_validator("query_timeout", "push_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("must be a positive number of seconds")
        return value


def load_settings(**overrides) -> Settings:
    """Load settings from the environment, raising ConfigError on failure."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            field_name = ".".join(str(p) for p in err["loc"]).upper()
            if err["type"] == "missing":
                problems.append(f"{field_name} is required but missing")
            else:
                problems.append(f"{field_name}: {err['msg']}")
        raise ConfigError("; ".join(problems)) from e
