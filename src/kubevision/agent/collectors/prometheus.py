"""
Prometheus Metrics Collector.

Runs instant queries against a Prometheus-compatible HTTP API and turns
the vector results into label-set/value rows.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

import aiohttp

from ...errors import AgentError, DecodeError, ProtocolError, TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Row:
    """A single series from a query result."""
    labels: dict
    value: float


@dataclass
class QueryResult:
    """Rows returned by one query."""
    name: str
    rows: list[Row] = field(default_factory=list)
    invalid_values: int = 0  # rows whose value could not be parsed

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)


class QueryStatus(Enum):
    """How a query in a cycle ended."""
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class QueryOutcome:
    """Result of one query in a cycle, success or not."""
    name: str
    status: QueryStatus
    result: QueryResult
    error: Optional[AgentError] = None
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == QueryStatus.FAILED


def parse_sample_value(value: Any) -> tuple[float, bool]:
    """
    Parse a Prometheus ``[timestamp, "<number>"]`` pair.

    Returns the parsed number and whether parsing succeeded. Anything
    malformed yields 0.0 instead of raising.
    """
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return 0.0, False
    raw = value[1]
    if not isinstance(raw, str):
        return 0.0, False
    try:
        return float(raw.strip()), True
    except ValueError:
        return 0.0, False


def decode_response(name: str, payload: Any) -> QueryResult:
    """Decode a /api/v1/query response body into a QueryResult."""
    if not isinstance(payload, dict):
        raise DecodeError(f"{name}: response is not a JSON object")

    status = payload.get("status")
    if status is not None and status != "success":
        error_type = payload.get("errorType", "unknown")
        raise ProtocolError(f"{name}: query failed ({error_type}): {payload.get('error', '')}")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise DecodeError(f"{name}: response has no data object")
    result = data.get("result")
    if result is None:
        result = []
    if not isinstance(result, list):
        raise DecodeError(f"{name}: data.result is not a list")

    query_result = QueryResult(name=name)
    for item in result:
        if not isinstance(item, dict):
            raise DecodeError(f"{name}: result entry is not an object")
        metric = item.get("metric") or {}
        if not isinstance(metric, dict):
            raise DecodeError(f"{name}: result metric is not an object")

        value, ok = parse_sample_value(item.get("value"))
        if not ok:
            query_result.invalid_values += 1

        labels = {str(k): str(v) for k, v in metric.items()}
        query_result.rows.append(Row(labels=labels, value=value))

    return query_result


class PrometheusClient:
    """Client for the Prometheus instant-query API."""

    def __init__(
        self,
        prom_url: str,
        session: aiohttp.ClientSession,
        timeout: float = 10.0,
    ):
        """Initialize the client with a shared HTTP session."""
        self.prom_url = prom_url.rstrip('/')
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def query(self, expression: str, name: Optional[str] = None) -> QueryResult:
        """
        Execute an instant query.

        Raises TransportError, ProtocolError or DecodeError. No retries.
        """
        name = name or expression
        url = f"{self.prom_url}/api/v1/query"

        try:
            async with self.session.get(
                url,
                params={"query": expression},
                timeout=self.timeout,
            ) as response:
                if response.status != 200:
                    raise ProtocolError(
                        f"{name}: non-200 response from Prometheus: {response.status}",
                        status_code=response.status,
                    )
                body = await response.read()
        except asyncio.TimeoutError as e:
            raise TransportError(f"{name}: timed out calling Prometheus API") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{name}: error calling Prometheus API: {e}") from e

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeError(f"{name}: error parsing Prometheus JSON: {e}") from e

        result = decode_response(name, payload)
        if result.invalid_values:
            logger.warning(
                f"{name}: {result.invalid_values} of {len(result)} values unparseable, defaulted to 0"
            )
        return result

    async def query_outcome(self, name: str, expression: str) -> QueryOutcome:
        """Run a query and fold any agent error into a failed outcome."""
        start = time.monotonic()
        try:
            result = await self.query(expression, name=name)
        except AgentError as e:
            logger.warning(f"Error querying {name}: {e}")
            return QueryOutcome(
                name=name,
                status=QueryStatus.FAILED,
                result=QueryResult(name=name),
                error=e,
                duration=time.monotonic() - start,
            )

        status = QueryStatus.OK if result.rows else QueryStatus.EMPTY
        return QueryOutcome(
            name=name,
            status=status,
            result=result,
            duration=time.monotonic() - start,
        )

    async def query_all(self, queries: Mapping[str, str]) -> dict[str, QueryOutcome]:
        """Run all queries concurrently; returns once every query has resolved."""
        names = list(queries)
        outcomes = await asyncio.gather(
            *(self.query_outcome(name, queries[name]) for name in names)
        )
        return dict(zip(names, outcomes))
