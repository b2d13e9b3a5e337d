import asyncio
from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest

from stackchan_bridge.config import TopicConfig


class FakeMqttClient:
    """Minimal fake paho-mqtt client for testing."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *args,
        rc_connect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        published: bool = True,
        **unused,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = events.get("rc_connect", rc_connect)
        self._publish_rc = events.get("publish_rc", publish_rc)
        self._published = events.get("is_published", published)

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def tls_set(self, *args, **kwargs):
        self._events["tls"] = True

    def reconnect_delay_set(self, min_delay=1, max_delay=120):
        self._events["reconnect_delay"] = (min_delay, max_delay)

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect and not self._events.get("never_connect"):
            self._loop.call_soon(
                self.on_connect, self, None, None, self._rc_connect, None
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(self.on_disconnect, self, None, None, 0, None)

    def publish(self, topic, payload, qos=0, retain=False):
        self._events.setdefault("published", []).append((topic, payload, qos, retain))
        published = self._published
        return SimpleNamespace(
            rc=self._publish_rc,
            wait_for_publish=lambda timeout=None: None,
            is_published=lambda: published,
        )

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return mqtt.MQTT_ERR_SUCCESS, 1

    # test helpers ---------------------------------------------------
    def deliver(self, topic: str, payload: bytes) -> None:
        self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload))


@pytest.fixture
def fake_paho(monkeypatch):
    """Patch paho's Client with :class:`FakeMqttClient`; yields the shared event dict."""

    events: dict = {"clients": []}

    def factory(*args, **kwargs):
        client = FakeMqttClient(asyncio.get_running_loop(), events, *args, **kwargs)
        events["clients"].append(client)
        return client

    monkeypatch.setattr("stackchan_bridge.adapters.mqtt.mqtt.Client", factory)
    return events


@pytest.fixture
def topics() -> TopicConfig:
    return TopicConfig()


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
