"""
Sample Merging.

Joins the per-query results of one cycle into one sample per workload.
Each query owns exactly one sample field, so the join is a full outer join
on the workload identity and the order of passes does not matter.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Optional

from .collectors.prometheus import QueryResult

DEFAULT_GROUPING = ("namespace", "pod")

# Sample field each named query fills, with the converter applied to its value
FIELD_CONVERTERS = {
    "cpu": float,
    "memory": float,
    "restarts": lambda v: int(v) if math.isfinite(v) else 0,
}


@dataclass(frozen=True)
class EntityIdentity:
    """Composite key of one monitored workload."""
    namespace: str
    name: str

    @classmethod
    def from_labels(cls, labels: Mapping[str, str], grouping: tuple[str, str] = DEFAULT_GROUPING) -> "EntityIdentity":
        ns_label, name_label = grouping
        return cls(namespace=labels.get(ns_label, ""), name=labels.get(name_label, ""))


@dataclass(frozen=True)
class MetricSample:
    """One merged record, as delivered to the backend."""
    namespace: str
    pod: str
    cpu: float = 0.0
    memory: float = 0.0
    restarts: int = 0
    timestamp: int = 0

    @property
    def identity(self) -> EntityIdentity:
        return EntityIdentity(self.namespace, self.pod)

    def to_dict(self) -> dict:
        return {
            'namespace': self.namespace,
            'pod': self.pod,
            'cpu': self.cpu,
            'memory': self.memory,
            'restarts': self.restarts,
            'timestamp': self.timestamp,
        }


@dataclass
class Batch:
    """All samples produced by one cycle. Unordered."""
    samples: list[MetricSample] = field(default_factory=list)
    timestamp: int = field(default_factory=lambda: int(time.time()))

    def __len__(self) -> int:
        return len(self.samples)

    def __iter__(self) -> Iterator[MetricSample]:
        return iter(self.samples)

    def __bool__(self) -> bool:
        return bool(self.samples)

    def by_identity(self) -> dict[EntityIdentity, MetricSample]:
        return {s.identity: s for s in self.samples}


def _total(values: list[float]) -> float:
    # fsum is exact, so the total does not depend on row order
    infinities = {v for v in values if math.isinf(v)}
    if any(math.isnan(v) for v in values) or len(infinities) > 1:
        return math.nan
    if infinities:
        return infinities.pop()
    return math.fsum(values)


def merge_results(
    results: Mapping[str, Optional[QueryResult]],
    timestamp: int,
    grouping: tuple[str, str] = DEFAULT_GROUPING,
) -> Batch:
    """
    Outer-join named query results into a Batch.

    ``results`` maps a sample field name (see FIELD_CONVERTERS) to the rows
    that supply it. Missing or empty results contribute nothing; fields no
    result covers stay at zero. Rows of one result that share an identity
    are summed, as a ``by (namespace, pod)`` aggregation would.
    """
    partial: dict[EntityIdentity, dict[str, list[float]]] = {}

    for field_name, result in results.items():
        if field_name not in FIELD_CONVERTERS:
            raise KeyError(f"Unknown sample field: {field_name}")
        if not result:
            continue
        for row in result:
            identity = EntityIdentity.from_labels(row.labels, grouping)
            record = partial.setdefault(identity, {})
            record.setdefault(field_name, []).append(row.value)

    samples = [
        MetricSample(
            namespace=identity.namespace,
            pod=identity.name,
            timestamp=timestamp,
            **{name: FIELD_CONVERTERS[name](_total(values)) for name, values in fields.items()},
        )
        for identity, fields in partial.items()
    ]
    return Batch(samples=samples, timestamp=timestamp)


def combine(
    cpu: Optional[QueryResult],
    memory: Optional[QueryResult],
    restarts: Optional[QueryResult],
    timestamp: int,
    grouping: tuple[str, str] = DEFAULT_GROUPING,
) -> Batch:
    """Merge the cpu, memory and restarts results of one cycle."""
    return merge_results(
        {"cpu": cpu, "memory": memory, "restarts": restarts},
        timestamp,
        grouping,
    )

