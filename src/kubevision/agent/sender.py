"""
Backend Sender.

Delivers a cycle's merged samples to the ingestion backend as one JSON
array. A batch is accepted whole or reported as failed; nothing is
retried or buffered, the next cycle's data supersedes it.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from ..errors import RejectedError, SerializationError, TransportError
from .merge import Batch

logger = logging.getLogger(__name__)

INGEST_PATH = "/ingest/metrics"
ACCEPTED_STATUSES = (200, 201)


@dataclass
class SendResult:
    """Outcome of a delivery that did not raise.

    Failures surface as exceptions, so ``success`` is always True here.
    """
    success: bool
    status_code: int = 0
    sent: int = 0


class BackendSender:
    """Sends merged batches to the ingestion backend."""

    def __init__(
        self,
        backend_url: str,
        session: aiohttp.ClientSession,
        timeout: float = 10.0,
    ):
        """Initialize the sender with a shared HTTP session."""
        self.backend_url = backend_url.rstrip('/')
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def url(self) -> str:
        return f"{self.backend_url}{INGEST_PATH}"

    def _get_headers(self) -> dict:
        """Get request headers."""
        return {
            'Content-Type': 'application/json',
            'User-Agent': 'KubeVisionAgent/1.0',
        }

    def serialize(self, batch: Batch) -> str:
        """Serialize a batch to a JSON array."""
        try:
            return json.dumps([s.to_dict() for s in batch], allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"failed to marshal metrics: {e}") from e

    async def deliver(self, batch: Batch) -> SendResult:
        """
        Deliver a batch with a single POST.

        An empty batch succeeds without touching the network. Raises
        SerializationError, TransportError or RejectedError otherwise.
        """
        if not batch:
            logger.info("No metrics to send, skipping push")
            return SendResult(success=True)

        payload = self.serialize(batch)

        try:
            async with self.session.post(
                self.url,
                data=payload,
                headers=self._get_headers(),
                timeout=self.timeout,
            ) as response:
                if response.status not in ACCEPTED_STATUSES:
                    error_text = await self._read_error(response)
                    raise RejectedError(response.status, error_text)
                status = response.status
        except asyncio.TimeoutError as e:
            raise TransportError("failed to send metrics: request timeout") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"failed to send metrics: {e}") from e

        logger.info(f"Pushed {len(batch)} metrics to backend")
        return SendResult(success=True, status_code=status, sent=len(batch))

    async def _read_error(self, response: aiohttp.ClientResponse) -> str:
        try:
            return (await response.text())[:500]
        except (aiohttp.ClientError, UnicodeDecodeError, asyncio.TimeoutError):
            return ""


def summarize(result: Optional[SendResult]) -> str:
    """One-line description of a delivery result for logs and the CLI."""
    if result is None:
        return "not sent"
    if result.sent == 0:
        return "nothing to send"
    return f"sent {result.sent} samples (HTTP {result.status_code})"
