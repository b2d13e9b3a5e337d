"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import paho.mqtt.client as mqtt

from ..config import BusConfig
from ..core.protocols import MessageHandler

LOGGER = logging.getLogger(__name__)


class BusTransportError(RuntimeError):
    """Raised when the broker does not accept a publish or subscription."""


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    paho runs its network loop on a background thread and reconnects on its
    own with a fixed delay. Every callback is hopped onto the asyncio loop
    before touching any state shared with coroutines.
    """

    def __init__(self, config: BusConfig, *, client_id: str) -> None:
        self.config = config
        self.client_id = client_id

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._subscriptions: Dict[str, int] = {}
        self._last_connect_rc: Optional[object] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def add_subscription(self, topic: str, qos: int = 1) -> None:
        """Subscribe to ``topic`` now if connected and again after every reconnect."""

        self._subscriptions[topic] = qos
        if self._client is not None and self._connected:
            self._subscribe(self._client, topic, qos)

    async def connect(self, timeout: Optional[float] = None) -> bool:
        """Start the network loop and wait up to ``timeout`` for the first CONNACK.

        Never raises for broker or network failures: those are logged and
        paho keeps retrying in the background. Returns whether the client
        is connected when the wait ends.
        """

        if self._client is not None:
            return self._connected

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None

        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id)
        client.enable_logger(LOGGER)

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if self.config.use_tls:
            client.tls_set()

        period = self.config.reconnect_period_seconds
        client.reconnect_delay_set(min_delay=period, max_delay=period)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s:%s", self.config.host, self.config.port
        )

        try:
            client.connect_async(self.config.host, self.config.port, self.config.keepalive)
            client.loop_start()
        except (OSError, ValueError) as exc:
            LOGGER.error("MQTT connection could not be started: %s", exc)
            return False

        wait_for = self.config.connect_timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=wait_for)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "MQTT broker not reachable after %.1fs; retrying every %.1fs",
                wait_for,
                period,
            )
        return self._connected

    async def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        """Publish once and wait for the broker to acknowledge the publish.

        Raises:
            BusTransportError: If disconnected, the write is rejected, or the
                broker does not confirm in time.
        """

        client = self._client
        if client is None or not self._connected:
            raise BusTransportError("MQTT client not connected")

        info = client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BusTransportError(f"Publish to {topic} failed with rc={info.rc}")

        if qos == 0:
            return

        timeout = self.config.publish_timeout_seconds
        try:
            await asyncio.to_thread(info.wait_for_publish, timeout)
        except (RuntimeError, ValueError) as exc:
            raise BusTransportError(f"Publish to {topic} failed: {exc}") from exc

        if not info.is_published():
            raise BusTransportError(
                f"Publish to {topic} not acknowledged within {timeout:.1f}s"
            )

    async def close(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker. Safe to call more than once."""

        client = self._client
        if client is None:
            return
        self._client = None

        was_connected = self._connected
        client.disconnect()

        try:
            if was_connected and self._disconnect_event is not None:
                await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect")
        finally:
            client.loop_stop()
            self._connected = False

    def _subscribe(self, client: mqtt.Client, topic: str, qos: int) -> None:
        result, _ = client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            LOGGER.error("Subscribe to %s failed with rc=%s", topic, result)
        else:
            LOGGER.info("Subscribed to %s", topic)

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._last_connect_rc = reason_code
        if reason_code == 0:
            LOGGER.info("Connected to MQTT broker")
            self._connected = True
            for topic, qos in list(self._subscriptions.items()):
                self._subscribe(client, topic, qos)
            self._call_in_loop(self._mark_connected)
        else:
            LOGGER.error("MQTT connection failed with rc=%s", reason_code)
            self._connected = False

    def _on_disconnect(
        self, client, userdata, flags, reason_code, properties=None
    ) -> None:
        self._connected = False
        if reason_code == 0:
            LOGGER.info("Disconnected from MQTT broker")
        else:
            LOGGER.warning(
                "Lost connection to MQTT broker (rc=%s); reconnecting", reason_code
            )
        if self._disconnect_event is not None:
            self._call_in_loop(self._disconnect_event.set)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        self._call_in_loop(self._dispatch, message.topic, message.payload)

    def _mark_connected(self) -> None:
        if self._connected_event is not None:
            self._connected_event.set()

    def _dispatch(self, topic: str, payload: bytes) -> None:
        handler = self._message_handler
        if handler is None:
            return
        try:
            result = handler(topic, payload)
            if asyncio.iscoroutine(result):
                asyncio.ensure_future(result)
        except Exception:  # pragma: no cover
            LOGGER.exception("MQTT message handler raised an exception")

    def _call_in_loop(self, callback, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)
