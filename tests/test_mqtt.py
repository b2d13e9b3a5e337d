"""Tests for the MQTT adapter."""

import asyncio

import paho.mqtt.client as mqtt
import pytest
import pytest_asyncio

from stackchan_bridge.adapters import BusTransportError, MQTTClient
from stackchan_bridge.config import BusConfig


@pytest_asyncio.fixture
async def mqtt_client(fake_paho):
    config = BusConfig(
        url="mqtt://broker.example.com:1884",
        username="bridge",
        password="secret",
        reconnect_period_seconds=2.0,
    )

    client = MQTTClient(config, client_id="bridge-1")
    client.add_subscription("stackchan/ack")
    await client.connect(timeout=1.0)

    yield client, fake_paho

    await client.close()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    client, events = mqtt_client

    assert client.is_connected
    assert events["connect_args"] == ("broker.example.com", 1884, 60)
    assert events["auth"] == ("bridge", "secret")
    assert events["reconnect_delay"] == (2.0, 2.0)
    assert events["loop_start"] == 1
    assert "tls" not in events
    assert events["subscribed"] == [("stackchan/ack", 1)]


@pytest.mark.asyncio
async def test_add_subscription_when_connected(mqtt_client):
    client, events = mqtt_client

    client.add_subscription("stackchan/state", qos=0)

    assert ("stackchan/state", 0) in events["subscribed"]


@pytest.mark.asyncio
async def test_publish_delegates_to_client(mqtt_client):
    client, events = mqtt_client

    await client.publish("stackchan/cmd", b"{}")

    assert events["published"] == [("stackchan/cmd", b"{}", 1, False)]


@pytest.mark.asyncio
async def test_message_handler_receives_messages(mqtt_client):
    client, events = mqtt_client
    received = []

    async def handler(topic, payload):
        received.append((topic, payload))

    client.set_message_handler(handler)
    events["clients"][0].deliver("stackchan/ack", b'{"id": "1"}')

    for _ in range(5):
        await asyncio.sleep(0)

    assert received == [("stackchan/ack", b'{"id": "1"}')]


@pytest.mark.asyncio
async def test_close_is_idempotent(mqtt_client):
    client, events = mqtt_client

    await client.close()
    await client.close()

    assert events["disconnect_called"] is True
    assert events["loop_stop"] == 1
    assert not client.is_connected


@pytest.mark.asyncio
async def test_publish_rejected_by_client(fake_paho):
    fake_paho["publish_rc"] = mqtt.MQTT_ERR_NO_CONN
    client = MQTTClient(BusConfig(), client_id="bridge-1")
    await client.connect(timeout=1.0)

    with pytest.raises(BusTransportError):
        await client.publish("stackchan/cmd", b"{}")

    await client.close()


@pytest.mark.asyncio
async def test_publish_without_puback_raises(fake_paho):
    fake_paho["is_published"] = False
    client = MQTTClient(BusConfig(publish_timeout_seconds=0.1), client_id="bridge-1")
    await client.connect(timeout=1.0)

    with pytest.raises(BusTransportError, match="not acknowledged"):
        await client.publish("stackchan/cmd", b"{}")

    await client.close()


@pytest.mark.asyncio
async def test_connect_timeout_returns_false(fake_paho):
    fake_paho["never_connect"] = True
    client = MQTTClient(BusConfig(url="mqtts://secure.example.com"), client_id="bridge-1")

    connected = await client.connect(timeout=0.01)

    assert connected is False
    assert fake_paho["tls"] is True
    assert fake_paho["connect_args"] == ("secure.example.com", 8883, 60)
    with pytest.raises(BusTransportError):
        await client.publish("stackchan/cmd", b"{}")

    await client.close()
    assert fake_paho["loop_stop"] == 1


@pytest.mark.asyncio
async def test_rejected_connection_is_not_connected(fake_paho):
    fake_paho["rc_connect"] = 5
    client = MQTTClient(BusConfig(), client_id="bridge-1")

    connected = await client.connect(timeout=0.05)

    assert connected is False
    await client.close()
