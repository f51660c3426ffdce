"""
KubeVision Agent Collectors.

Each collector queries a metrics source for one cycle's raw data.
"""

from .prometheus import (
    PrometheusClient,
    QueryOutcome,
    QueryResult,
    QueryStatus,
    Row,
)

__all__ = [
    "PrometheusClient",
    "QueryOutcome",
    "QueryResult",
    "QueryStatus",
    "Row",
]
