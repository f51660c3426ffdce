"""
KubeVision Agent - Main Daemon.

On every tick, queries Prometheus for per-pod CPU, memory and restarts,
merges the three results and pushes the batch to the backend.
"""

import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import aiohttp

from ..errors import AgentError
from ..utils.logger import setup_logging
from .collectors.prometheus import PrometheusClient, QueryOutcome
from .config import AgentConfig
from .merge import Batch, combine
from .sender import BackendSender, SendResult, summarize

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """What happened during one query, merge and deliver cycle."""
    timestamp: int
    outcomes: dict[str, QueryOutcome] = field(default_factory=dict)
    batch: Batch = field(default_factory=Batch)
    send_result: Optional[SendResult] = None
    send_error: Optional[AgentError] = None

    @property
    def failed_queries(self) -> list[str]:
        return [name for name, o in self.outcomes.items() if o.failed]

    @property
    def delivered(self) -> bool:
        return self.send_result is not None and self.send_result.success


class KubeVisionAgent:
    """
    Main agent daemon.

    Owns the shared HTTP session; the Prometheus client and the backend
    sender both borrow it. Cycles run strictly one after another.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the agent."""
        self.config = config or AgentConfig.from_env()
        self.clock = clock

        self._session = session
        self._owns_session = session is None
        self._collector: Optional[PrometheusClient] = None
        self._sender: Optional[BackendSender] = None

        # State
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._signals: list[signal.Signals] = []
        self.cycles = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
            self._collector = None
            self._sender = None
        return self._session

    async def collector(self) -> PrometheusClient:
        if self._collector is None:
            self._collector = PrometheusClient(
                self.config.prom_url,
                await self._get_session(),
                timeout=self.config.query_timeout,
            )
        return self._collector

    async def sender(self) -> BackendSender:
        if self._sender is None:
            self._sender = BackendSender(
                self.config.backend_url,
                await self._get_session(),
                timeout=self.config.push_timeout,
            )
        return self._sender

    async def scrape(self) -> CycleReport:
        """Query and merge, without delivering."""
        timestamp = int(self.clock())
        collector = await self.collector()

        outcomes = await collector.query_all(self.config.queries.expressions())

        batch = combine(
            outcomes["cpu"].result,
            outcomes["memory"].result,
            outcomes["restarts"].result,
            timestamp,
            self.config.queries.grouping_labels,
        )
        report = CycleReport(timestamp=timestamp, outcomes=outcomes, batch=batch)

        if len(report.failed_queries) == len(outcomes):
            logger.error("All Prometheus queries failed, nothing to forward this cycle")
        elif report.failed_queries:
            logger.warning(
                f"Partial cycle: {', '.join(report.failed_queries)} failed, forwarding remaining data"
            )

        logger.info(f"Scraped {len(batch)} metric samples")
        return report

    async def run_cycle(self) -> CycleReport:
        """Run one full cycle. Delivery errors are logged, never raised."""
        report = await self.scrape()
        sender = await self.sender()

        try:
            report.send_result = await sender.deliver(report.batch)
        except AgentError as e:
            report.send_error = e
            logger.error(f"Error sending metrics to backend: {e}")
        else:
            logger.info(f"Cycle complete: {summarize(report.send_result)}")

        self.cycles += 1
        return report

    async def start(self):
        """Run cycles on every tick until stopped."""
        logger.info("Starting KubeVision Agent...")
        logger.info(
            f"Loaded config: PromURL={self.config.prom_url} "
            f"BackendURL={self.config.backend_url} Interval={self.config.scrape_interval}s"
        )

        self._running = True
        self._stop_event = asyncio.Event()

        # Setup signal handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)
            self._signals.append(sig)

        try:
            while self._running:
                if await self._wait_for_tick():
                    break
                try:
                    await self.run_cycle()
                except Exception:
                    logger.exception("Unexpected error during cycle")
        finally:
            await self.stop()

    async def _wait_for_tick(self) -> bool:
        """Sleep one interval; returns True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.scrape_interval)
        except asyncio.TimeoutError:
            return False
        return True

    def request_stop(self):
        """Ask the loop to exit after the current cycle."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self):
        """Stop the agent and release the HTTP session."""
        logger.info("Stopping KubeVision Agent...")
        self.request_stop()

        loop = asyncio.get_running_loop()
        while self._signals:
            loop.remove_signal_handler(self._signals.pop())

        await self.close()
        logger.info("KubeVision Agent stopped")

    async def close(self):
        """Close the HTTP session if the agent created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def run_agent(config_path: Optional[str] = None, config: Optional[AgentConfig] = None):
    """Run the agent until interrupted."""
    if config is None:
        config = AgentConfig.from_yaml(config_path) if config_path else AgentConfig.from_env()

    setup_logging(config.log_level, config.log_file)
    agent = KubeVisionAgent(config)

    try:
        asyncio.run(agent.start())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    run_agent(config_path)
