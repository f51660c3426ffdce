"""
Agent Errors.

Every failure the query and delivery path can produce derives from
AgentError, so a cycle can catch the whole family in one place.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class TransportError(AgentError):
    """The network call could not complete (connection refused, timeout)."""


class ProtocolError(AgentError):
    """The metrics source answered with an unexpected status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(AgentError):
    """A response body did not match the expected schema."""


class SerializationError(AgentError):
    """A batch could not be encoded for delivery."""


class RejectedError(AgentError):
    """The ingestion endpoint refused a batch."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"backend returned {status_code}: {body}" if body else f"backend returned {status_code}")
        self.status_code = status_code
        self.body = body


class ConfigError(AgentError):
    """Configuration is missing or invalid."""
