"""Command dispatch with acknowledgement correlation and retry."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from .adapters.mqtt import BusTransportError
from .config import CommandConfig
from .core import BusPublisher, CommandTimeoutError, CorrelationTable, StateCache
from .models import Acknowledgement, Command, DeviceStateSnapshot

LOGGER = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


def new_request_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    timeout: float = 8.0
    max_attempts: int = 3
    base_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after failed attempt number ``attempt`` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    @classmethod
    def from_config(cls, config: CommandConfig) -> "RetryPolicy":
        return cls(
            timeout=config.ack_timeout_seconds,
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
        )


class CommandDispatcher:
    """Gives request/response semantics to the one-way command topic.

    Every attempt publishes under a fresh request id, so an acknowledgement
    for an abandoned attempt finds no waiter and is dropped by the
    correlation table. Attempts run one after another, never in parallel.
    """

    def __init__(
        self,
        publisher: BusPublisher,
        correlation: CorrelationTable,
        state_cache: StateCache,
        *,
        command_topic: str,
        policy: Optional[RetryPolicy] = None,
        state_max_age: float = 30.0,
        sleep: SleepFunc = asyncio.sleep,
        id_factory: Callable[[], str] = new_request_id,
    ) -> None:
        self._publisher = publisher
        self._correlation = correlation
        self._state_cache = state_cache
        self._command_topic = command_topic
        self._policy = policy or RetryPolicy()
        self._state_max_age = state_max_age
        self._sleep = sleep
        self._id_factory = id_factory
        self._closed = False

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def send_command(
        self,
        command: Command,
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> Acknowledgement:
        """Publish ``command`` and wait for its acknowledgement.

        Publish failures and ack timeouts are retried with exponential
        backoff. An acknowledgement with ``status == "error"`` is a reply
        from the device and is returned, not retried.

        Raises:
            CommandTimeoutError: If the final attempt saw no acknowledgement.
            BusTransportError: If the final attempt could not be published.
        """

        timeout = self._policy.timeout if timeout is None else timeout
        attempts = max(1, self._policy.max_attempts if max_attempts is None else max_attempts)
        policy = RetryPolicy(
            timeout=timeout,
            max_attempts=attempts,
            base_delay=self._policy.base_delay if base_delay is None else base_delay,
        )

        attempt = 0
        while True:
            attempt += 1
            if self._closed:
                raise BusTransportError("Command dispatcher is closed")

            request_id = self._id_factory()
            try:
                return await self._attempt(command, request_id, timeout)
            except (BusTransportError, CommandTimeoutError) as exc:
                if attempt >= attempts or self._closed:
                    LOGGER.error(
                        "%s command failed after %d attempt(s): %s",
                        command.type.value,
                        attempt,
                        exc,
                    )
                    raise
                delay = policy.delay_for(attempt)
                LOGGER.warning(
                    "%s command attempt %d/%d failed (%s); retrying in %.1fs",
                    command.type.value,
                    attempt,
                    attempts,
                    exc,
                    delay,
                )
                await self._sleep(delay)

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        """One-way publish that expects no acknowledgement."""

        await self._publisher.publish(topic, payload)

    def get_fresh_state(self, max_age: Optional[float] = None) -> Optional[DeviceStateSnapshot]:
        return self._state_cache.get_fresh(
            self._state_max_age if max_age is None else max_age
        )

    def close(self) -> None:
        self._closed = True

    async def _attempt(
        self, command: Command, request_id: str, timeout: float
    ) -> Acknowledgement:
        # Register before publishing so an ack that beats the PUBACK still finds its waiter.
        future = self._correlation.register(request_id, timeout)
        message = {
            "id": request_id,
            "type": command.type.value,
            "payload": command.wire_payload(),
        }
        try:
            await self._publisher.publish(self._command_topic, message)
            LOGGER.info("Published %s command %s", command.type.value, request_id)
            return await future
        finally:
            self._correlation.discard(request_id)
            if future.done() and not future.cancelled():
                # mark retrieved when the publish itself failed after expiry
                future.exception()
