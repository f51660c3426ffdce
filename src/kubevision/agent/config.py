"""
Agent Configuration.
"""

import dataclasses
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import yaml

from ..config import DEFAULT_EXCLUDED_NAMESPACES, load_settings, parse_duration
from ..errors import ConfigError

CPU_TEMPLATE = (
    'sum(rate(container_cpu_usage_seconds_total{{container!="",namespace!~"{excluded}"}}[5m])) by ({group})'
)
MEMORY_TEMPLATE = (
    'sum(container_memory_working_set_bytes{{container!="",namespace!~"{excluded}"}}) by ({group})'
)
RESTARTS_TEMPLATE = (
    'sum(kube_pod_container_status_restarts_total{{namespace!~"{excluded}"}}) by ({group})'
)


def _positive_seconds(name: str, value) -> float:
    """Coerce a duration in seconds; zero would disable the aiohttp timeout."""
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {name}: {value!r} is not a number") from None
    if not math.isfinite(seconds) or seconds <= 0:
        raise ConfigError(f"Invalid {name}: {value!r} must be a positive number of seconds")
    return seconds


@dataclass
class QueryConfig:
    """PromQL queries issued each cycle."""
    excluded_namespaces: str = DEFAULT_EXCLUDED_NAMESPACES
    # Labels forming the (namespace, name) identity of a workload
    grouping_labels: tuple[str, str] = ("namespace", "pod")
    # Verbatim overrides; rendered from the templates when unset
    cpu: Optional[str] = None
    memory: Optional[str] = None
    restarts: Optional[str] = None

    def __post_init__(self):
        self.grouping_labels = tuple(self.grouping_labels)
        if len(self.grouping_labels) != 2:
            raise ConfigError("grouping_labels must name exactly two labels")

    def expressions(self) -> dict[str, str]:
        """Return the cpu, memory and restarts expressions, in that order."""
        params = {
            "excluded": self.excluded_namespaces,
            "group": ", ".join(self.grouping_labels),
        }
        return {
            "cpu": self.cpu or CPU_TEMPLATE.format(**params),
            "memory": self.memory or MEMORY_TEMPLATE.format(**params),
            "restarts": self.restarts or RESTARTS_TEMPLATE.format(**params),
        }


@dataclass
class AgentConfig:
    """Main agent configuration."""
    prom_url: str
    backend_url: str

    scrape_interval: float = 30.0  # seconds
    query_timeout: float = 10.0
    push_timeout: float = 10.0

    queries: QueryConfig = field(default_factory=QueryConfig)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        for name in ("prom_url", "backend_url"):
            value = (getattr(self, name) or "").strip()
            if not value:
                raise ConfigError(f"{name.upper()} is required but missing")
            setattr(self, name, value.rstrip("/"))
        for name in ("scrape_interval", "query_timeout", "push_timeout"):
            setattr(self, name, _positive_seconds(name.upper(), getattr(self, name)))

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load configuration from environment variables."""
        settings = load_settings()
        return cls(
            prom_url=settings.prom_url,
            backend_url=settings.backend_url,
            scrape_interval=settings.scrape_interval,
            query_timeout=settings.query_timeout,
            push_timeout=settings.push_timeout,
            queries=QueryConfig(excluded_namespaces=settings.excluded_namespaces),
            log_level=settings.log_level,
            log_file=str(settings.log_file) if settings.log_file else None,
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AgentConfig":
        """Load configuration from YAML file."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must be a mapping")
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "AgentConfig":
        """Create config from dictionary."""
        kwargs = {}

        # Simple fields
        for key in ["prom_url", "backend_url", "log_level", "log_file"]:
            if key in data:
                kwargs[key] = data[key]

        # Durations: a number of seconds or a Go duration string
        for key in ["scrape_interval", "query_timeout", "push_timeout"]:
            if key not in data:
                continue
            value = data[key]
            if isinstance(value, str):
                try:
                    value = parse_duration(value)
                except ValueError as e:
                    raise ConfigError(f"Invalid {key.upper()}: {e}") from e
            kwargs[key] = value

        if "queries" in data:
            try:
                kwargs["queries"] = QueryConfig(**data["queries"])
            except TypeError as e:
                raise ConfigError(f"Invalid queries section: {e}") from e

        try:
            return cls(**kwargs)
        except TypeError as e:
            missing = [k.upper() for k in ("prom_url", "backend_url") if k not in kwargs]
            raise ConfigError(f"{', '.join(missing)} is required but missing") from e

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["queries"]["grouping_labels"] = list(self.queries.grouping_labels)
        return data

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        with open(path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)
