"""
Best-effort, bounded audit writes.

Audit completeness is favored over request latency, but an audit failure
must never block or fail the operation being audited:
- each write runs as its own task, shielded from caller cancellation
- each write is bounded by a timeout
- failures are logged and kept on a local failure channel, never raised
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from caseguard.models import Decision, utcnow
from caseguard.stores.base import AuditSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditWriteFailure:
    """One audit write that did not complete."""

    kind: str  # 'decision' or 'access_log'
    error: str
    occurred_at: datetime


class AuditRecorder:
    """
    Writes decisions and meta-audit entries to the Audit Sink.

    The failure channel is a bounded deque so a persistently broken sink
    cannot grow memory without limit.
    """

    MAX_FAILURES_KEPT = 1000

    def __init__(
        self,
        sink: AuditSink,
        timeout_seconds: float = 2.0,
    ):
        """
        Initialize recorder.

        Args:
            sink: Audit Sink to write to
            timeout_seconds: Upper bound for a single write
        """
        self._sink = sink
        self._timeout = timeout_seconds
        self._pending: set[asyncio.Task] = set()
        self.failures: deque[AuditWriteFailure] = deque(maxlen=self.MAX_FAILURES_KEPT)

    async def record_decision(self, decision: Decision) -> None:
        """Write a decision. Never raises except on caller cancellation."""
        await self._run("decision", lambda: self._sink.append(decision))

    async def record_access(
        self, principal_id: str, view_name: str, params: dict[str, Any]
    ) -> None:
        """Write a meta-audit entry for an audit view access."""
        await self._run(
            "access_log",
            lambda: self._sink.append_access_log(principal_id, view_name, params),
        )

    async def drain(self) -> None:
        """Wait for every in-flight write to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _run(self, kind: str, write: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.ensure_future(self._write(kind, write))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        # If the caller is cancelled the write keeps going, still bounded
        # by its own timeout.
        await asyncio.shield(task)

    async def _write(self, kind: str, write: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.wait_for(write(), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._report(kind, f"timed out after {self._timeout}s")
        except Exception as e:
            self._report(kind, f"{type(e).__name__}: {e}")

    def _report(self, kind: str, error: str) -> None:
        failure = AuditWriteFailure(kind=kind, error=error, occurred_at=utcnow())
        self.failures.append(failure)
        logger.error(f"Audit {kind} write failed: {error}")
