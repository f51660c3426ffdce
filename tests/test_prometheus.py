"""Tests for the Prometheus query client."""

import logging
import time

import aiohttp
import pytest

from kubevision.agent.collectors.prometheus import (
    PrometheusClient,
    QueryStatus,
    decode_response,
    parse_sample_value,
)
from kubevision.errors import DecodeError, ProtocolError, TransportError

from .conftest import FakePrometheus, pod, vector

CPU_QUERY = 'sum(rate(container_cpu_usage_seconds_total{container!=""}[5m])) by (namespace, pod)'


class TestParseSampleValue:
    """Permissive parsing of [timestamp, "value"] pairs."""

    pytestmark = pytest.mark.unit

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ([1700000000.1, "1.5"], 1.5),
            ([1700000000, "200"], 200.0),
            ([0, "1e3"], 1000.0),
            ([0, " 42 "], 42.0),
        ],
    )
    def test_valid_values(self, raw, expected) -> None:
        assert parse_sample_value(raw) == (expected, True)

    @pytest.mark.parametrize(
        "raw",
        [
            [0, "not-a-number"],
            [0, ""],
            [0, 1.5],
            [0, None],
            [0],
            [0, "1", "2"],
            None,
            "1.5",
        ],
    )
    def test_malformed_values_default_to_zero(self, raw) -> None:
        assert parse_sample_value(raw) == (0.0, False)

    def test_special_float_strings_parse(self) -> None:
        value, ok = parse_sample_value([0, "+Inf"])

        assert ok
        assert value == float("inf")


class TestDecodeResponse:
    """Schema checks on query response bodies."""

    pytestmark = pytest.mark.unit

    def test_decodes_rows(self) -> None:
        decoded = decode_response("cpu", vector((pod("a", "p1"), "1.5"), (pod("a", "p2"), "0")))

        assert [row.labels for row in decoded] == [pod("a", "p1"), pod("a", "p2")]
        assert [row.value for row in decoded] == [1.5, 0.0]
        assert decoded.invalid_values == 0

    def test_counts_invalid_values(self) -> None:
        decoded = decode_response("cpu", vector((pod("a", "p1"), "garbage"), (pod("a", "p2"), "2")))

        assert [row.value for row in decoded] == [0.0, 2.0]
        assert decoded.invalid_values == 1

    def test_empty_result_is_not_an_error(self) -> None:
        decoded = decode_response("cpu", vector())

        assert len(decoded) == 0

    def test_null_result_treated_as_empty(self) -> None:
        decoded = decode_response("cpu", {"status": "success", "data": {"result": None}})

        assert len(decoded) == 0

    def test_error_status_raises_protocol_error(self) -> None:
        body = {"status": "error", "errorType": "bad_data", "error": "parse error at char 4"}

        with pytest.raises(ProtocolError, match="bad_data"):
            decode_response("cpu", body)

    @pytest.mark.parametrize(
        "body",
        [
            [],
            "success",
            {"status": "success"},
            {"status": "success", "data": []},
            {"status": "success", "data": {"result": {}}},
            {"status": "success", "data": {"result": ["row"]}},
            {"status": "success", "data": {"result": [{"metric": [], "value": [0, "1"]}]}},
        ],
    )
    def test_schema_mismatch_raises_decode_error(self, body) -> None:
        with pytest.raises(DecodeError):
            decode_response("cpu", body)

    def test_non_string_labels_stringified(self) -> None:
        decoded = decode_response("cpu", vector(({"namespace": "a", "pod": "p1", "shard": 3}, "1")))

        assert decoded.rows[0].labels["shard"] == "3"


@pytest.mark.integration
class TestPrometheusClientQuery:
    """Query behaviour against a live fake server."""

    async def test_sends_url_encoded_expression(
        self, prometheus: FakePrometheus, session: aiohttp.ClientSession
    ) -> None:
        client = PrometheusClient(prometheus.url, session)

        await client.query(CPU_QUERY, name="cpu")

        assert prometheus.queries == [CPU_QUERY]
        raw_path = prometheus.requests[0].raw_path
        assert "{" not in raw_path
        assert '"' not in raw_path

    async def test_trailing_slash_on_address(
        self, prometheus: FakePrometheus, session: aiohttp.ClientSession
    ) -> None:
        client = PrometheusClient(prometheus.url + "/", session)

        await client.query("up")

        assert prometheus.requests[0].path == "/api/v1/query"

    async def test_returns_rows(self, prometheus: FakePrometheus, session: aiohttp.ClientSession) -> None:
        prometheus.respond("container_cpu", vector((pod("a", "p1"), "1.5")))
        client = PrometheusClient(prometheus.url, session)

        rows = await client.query(CPU_QUERY, name="cpu")

        assert rows.name == "cpu"
        assert rows.rows[0].value == 1.5

    async def test_non_200_raises_protocol_error(
        self, prometheus: FakePrometheus, session: aiohttp.ClientSession
    ) -> None:
        prometheus.respond("container_cpu", {"status": "error"}, status=503)
        client = PrometheusClient(prometheus.url, session)

        with pytest.raises(ProtocolError) as exc_info:
            await client.query(CPU_QUERY, name="cpu")

        assert exc_info.value.status_code == 503

    async def test_invalid_json_raises_decode_error(
        self, prometheus: FakePrometheus, session: aiohttp.ClientSession
    ) -> None:
        prometheus.respond("container_cpu", text="<html>gateway</html>")
        client = PrometheusClient(prometheus.url, session)

        with pytest.raises(DecodeError):
            await client.query(CPU_QUERY, name="cpu")

    async def test_unreachable_raises_transport_error(
        self, dead_url: str, session: aiohttp.ClientSession
    ) -> None:
        client = PrometheusClient(dead_url, session)

        with pytest.raises(TransportError):
            await client.query(CPU_QUERY, name="cpu")

    async def test_timeout_raises_transport_error(
        self, prometheus: FakePrometheus, session: aiohttp.ClientSession
    ) -> None:
        prometheus.delay = 1.0
        client = PrometheusClient(prometheus.url, session, timeout=0.1)

        with pytest.raises(TransportError, match="timed out"):
            await client.query(CPU_QUERY, name="cpu")

    async def test_unparseable_value_logged_and_zeroed(
        self, prometheus: FakePrometheus, session: aiohttp.ClientSession, caplog
    ) -> None:
        prometheus.respond("container_cpu", vector((pod("a", "p1"), "NaNish")))
        client = PrometheusClient(prometheus.url, session)

        with caplog.at_level(logging.WARNING):
            rows = await client.query(CPU_QUERY, name="cpu")

        assert rows.rows[0].value == 0.0
        assert "unparseable" in caplog.text


@pytest.mark.integration
class TestPrometheusClientQueryAll:
    """Concurrent queries folded into outcomes."""

    QUERIES = {
        "cpu": "container_cpu_usage_seconds_total",
        "memory": "container_memory_working_set_bytes",
        "restarts": "kube_pod_container_status_restarts_total",
    }

    async def test_outcome_per_query(self, prometheus: FakePrometheus, session: aiohttp.ClientSession) -> None:
        prometheus.respond("container_cpu", vector((pod("a", "p1"), "1")))
        prometheus.respond("container_memory", {}, status=500)
        client = PrometheusClient(prometheus.url, session)

        outcomes = await client.query_all(self.QUERIES)

        assert list(outcomes) == ["cpu", "memory", "restarts"]
        assert outcomes["cpu"].status == QueryStatus.OK
        assert outcomes["memory"].status == QueryStatus.FAILED
        assert isinstance(outcomes["memory"].error, ProtocolError)
        assert len(outcomes["memory"].result) == 0
        assert outcomes["restarts"].status == QueryStatus.EMPTY
        assert outcomes["restarts"].error is None

    async def test_unreachable_source_never_raises(
        self, dead_url: str, session: aiohttp.ClientSession, caplog
    ) -> None:
        client = PrometheusClient(dead_url, session)

        with caplog.at_level(logging.WARNING):
            outcomes = await client.query_all(self.QUERIES)

        assert all(o.failed for o in outcomes.values())
        assert all(isinstance(o.error, TransportError) for o in outcomes.values())
        assert "Error querying cpu" in caplog.text

    async def test_queries_run_concurrently(
        self, prometheus: FakePrometheus, session: aiohttp.ClientSession
    ) -> None:
        prometheus.delay = 0.3
        client = PrometheusClient(prometheus.url, session)

        start = time.monotonic()
        outcomes = await client.query_all(self.QUERIES)
        elapsed = time.monotonic() - start

        assert not any(o.failed for o in outcomes.values())
        assert len(prometheus.requests) == 3
        assert elapsed < 0.8
