"""Correlation of asynchronous acknowledgements with the requests that caused them."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..models import Acknowledgement

LOGGER = logging.getLogger(__name__)


class CommandTimeoutError(RuntimeError):
    """Raised when no acknowledgement arrives before a request's deadline."""

    def __init__(self, request_id: str, timeout: float) -> None:
        super().__init__(
            f"Command {request_id} timed out after {timeout:.1f}s waiting for ack"
        )
        self.request_id = request_id
        self.timeout = timeout


@dataclass(slots=True)
class PendingRequest:
    request_id: str
    future: asyncio.Future
    deadline: float
    timer: asyncio.TimerHandle


class CorrelationTable:
    """In-memory map from request id to the waiter for its acknowledgement.

    All methods must be called from the event loop thread. The MQTT adapter
    hops inbound messages onto the loop before they reach :meth:`resolve`,
    so no additional locking is needed.

    Each entry owns a deadline timer. Whichever comes first, the matching
    acknowledgement or the deadline, removes the entry and completes the
    future; the other one then finds nothing to act on.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, request_id: str, timeout: float) -> asyncio.Future:
        """Create a waiter for ``request_id`` that fails after ``timeout`` seconds."""

        if request_id in self._pending:
            raise ValueError(f"Request id already pending: {request_id}")

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id, timeout)
        self._pending[request_id] = PendingRequest(
            request_id=request_id,
            future=future,
            deadline=loop.time() + timeout,
            timer=timer,
        )
        LOGGER.debug("Registered pending request %s (timeout=%.1fs)", request_id, timeout)
        return future

    def resolve(self, ack: Acknowledgement) -> bool:
        """Complete the waiter matching ``ack.id``.

        Returns False, without raising, when no request is pending under that
        id (late, duplicate or foreign acknowledgements).
        """

        entry = self._pending.pop(ack.id, None)
        if entry is None:
            LOGGER.debug("Dropping ack with no pending request: %s", ack.id)
            return False

        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(ack)
        LOGGER.debug("Resolved request %s (status=%s)", ack.id, ack.status.value)
        return True

    def discard(
        self, request_id: str, error: Optional[BaseException] = None
    ) -> Optional[PendingRequest]:
        """Remove an entry, failing its waiter with ``error`` or cancelling it."""

        entry = self._pending.pop(request_id, None)
        if entry is None:
            return None
        entry.timer.cancel()
        if not entry.future.done():
            if error is None:
                entry.future.cancel()
            else:
                entry.future.set_exception(error)
        return entry

    def discard_all(self, error: Optional[BaseException] = None) -> int:
        request_ids = list(self._pending)
        for request_id in request_ids:
            self.discard(request_id, error)
        if request_ids:
            LOGGER.info("Discarded %d pending request(s)", len(request_ids))
        return len(request_ids)

    def _expire(self, request_id: str, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        LOGGER.warning("Request %s timed out after %.1fs", request_id, timeout)
        if not entry.future.done():
            entry.future.set_exception(CommandTimeoutError(request_id, timeout))
