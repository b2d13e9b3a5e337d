"""Bus transport: topic routing between the MQTT adapter and the command core."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from .adapters.mqtt import BusTransportError, MQTTClient
from .config import TopicConfig
from .core import CorrelationTable, StateCache
from .models import Acknowledgement, DeviceStateSnapshot

LOGGER = logging.getLogger(__name__)


class BusTransport:
    """Routes inbound acks and state reports; serialises outbound payloads.

    The inbound handler is the only writer of the correlation table's
    completions and of the state cache.
    """

    def __init__(
        self,
        client: MQTTClient,
        topics: TopicConfig,
        correlation: CorrelationTable,
        state_cache: StateCache,
    ) -> None:
        self._client = client
        self._topics = topics
        self._correlation = correlation
        self._state_cache = state_cache
        self._closed = False

        client.set_message_handler(self.handle_message)
        client.add_subscription(topics.ack)
        client.add_subscription(topics.state)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    async def connect(self, timeout: Optional[float] = None) -> bool:
        return await self._client.connect(timeout)

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        if self._closed:
            raise BusTransportError("Bus transport is closed")
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        await self._client.publish(topic, data)

    def handle_message(self, topic: str, payload: bytes) -> None:
        if topic == self._topics.ack:
            self._handle_ack(payload)
        elif topic == self._topics.state:
            self._handle_state(payload)
        else:
            LOGGER.debug("Ignoring message on unexpected topic %s", topic)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        LOGGER.info("Closing bus transport")
        self._correlation.discard_all(BusTransportError("Bus transport closed"))
        self._client.set_message_handler(None)
        await self._client.close()

    async def __aenter__(self) -> "BusTransport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _handle_ack(self, payload: bytes) -> None:
        try:
            ack = Acknowledgement.from_json(payload)
        except ValueError as exc:
            LOGGER.error("Failed to parse ack: %s", exc)
            return
        self._correlation.resolve(ack)

    def _handle_state(self, payload: bytes) -> None:
        try:
            snapshot = DeviceStateSnapshot.from_json(
                payload, captured_at=self._state_cache.now()
            )
        except ValueError as exc:
            LOGGER.error("Failed to parse state: %s", exc)
            return
        self._state_cache.update(snapshot)
