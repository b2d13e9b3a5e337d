"""Stand-in for the robot: acks commands and reports state over the bus."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .adapters.mqtt import BusTransportError, MQTTClient
from .config import TopicConfig

LOGGER = logging.getLogger(__name__)

STATE_INTERVAL_SECONDS = 15.0


@dataclass(slots=True)
class SimulatedDevice:
    battery: int = 90
    temperature: float = 36.5
    listening: bool = True
    last_motion: str = "idle"
    last_expression: str = "neutral"
    brightness: int = 70

    def apply(self, command_type: str, payload: Dict[str, Any]) -> None:
        if command_type == "volume":
            self.battery = max(10, self.battery - 1)
        elif command_type == "motion":
            self.last_motion = str(payload.get("motion") or "unknown")
        elif command_type == "expression":
            self.last_expression = str(payload.get("expression") or "unknown")
        elif command_type == "listen":
            self.listening = bool(payload.get("listen"))
        elif command_type == "brightness":
            try:
                value = int(payload.get("brightness", self.brightness))
            except (TypeError, ValueError):
                value = self.brightness
            self.brightness = min(100, max(0, value))

    def state_payload(self) -> Dict[str, Any]:
        return {
            "battery": self.battery,
            "temperature": self.temperature,
            "listening": self.listening,
            "lastMotion": self.last_motion,
            "lastExpression": self.last_expression,
            "brightness": self.brightness,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }


class DeviceSimulator:
    def __init__(
        self,
        client: MQTTClient,
        topics: TopicConfig,
        *,
        device: Optional[SimulatedDevice] = None,
        state_interval: float = STATE_INTERVAL_SECONDS,
    ) -> None:
        self._client = client
        self._topics = topics
        self.device = device or SimulatedDevice()
        self._state_interval = state_interval
        self._stop_event = asyncio.Event()

        client.set_message_handler(self.handle_message)
        client.add_subscription(topics.command)

    async def run(self) -> None:
        await self._client.connect()
        try:
            while not self._stop_event.is_set():
                await self.publish_state()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self._state_interval
                    )
        finally:
            await self._client.close()

    def stop(self) -> None:
        self._stop_event.set()

    async def handle_message(self, topic: str, payload: bytes) -> None:
        if topic != self._topics.command:
            return
        try:
            message = json.loads(payload)
            request_id = message["id"]
            command_type = message["type"]
            command_payload = message.get("payload") or {}
            if not isinstance(command_payload, dict):
                raise TypeError("payload must be an object")
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.error("Bad command payload: %s", exc)
            return

        LOGGER.info("Received %s command %s", command_type, request_id)
        await self._publish(
            self._topics.ack, {"id": request_id, "status": "ok", "message": "simulated"}
        )
        self.device.apply(command_type, command_payload)
        await self.publish_state()

    async def publish_state(self) -> None:
        await self._publish(self._topics.state, self.device.state_payload())

    async def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        try:
            await self._client.publish(
                topic, json.dumps(payload, ensure_ascii=False).encode("utf-8")
            )
        except BusTransportError as exc:
            LOGGER.warning("Simulator publish to %s failed: %s", topic, exc)
