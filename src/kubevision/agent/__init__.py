"""
KubeVision Agent core.

Queries Prometheus, merges the per-pod results and delivers them
to the ingestion backend once per scrape interval.
"""

from .agent import CycleReport, KubeVisionAgent
from .config import AgentConfig, QueryConfig
from .merge import Batch, EntityIdentity, MetricSample, combine
from .sender import BackendSender, SendResult

__all__ = [
    "KubeVisionAgent",
    "CycleReport",
    "AgentConfig",
    "QueryConfig",
    "Batch",
    "EntityIdentity",
    "MetricSample",
    "combine",
    "BackendSender",
    "SendResult",
]
