"""Tests for topic routing between the MQTT adapter and the command core."""

import asyncio
import json

import pytest
import pytest_asyncio

from stackchan_bridge.adapters import BusTransportError, MQTTClient
from stackchan_bridge.config import BusConfig
from stackchan_bridge.core import CorrelationTable, StateCache
from stackchan_bridge.transport import BusTransport


@pytest_asyncio.fixture
async def transport(fake_paho, topics, clock):
    correlation = CorrelationTable()
    state_cache = StateCache(clock=clock)
    client = MQTTClient(BusConfig(), client_id="bridge-1")
    bus = BusTransport(client, topics, correlation, state_cache)
    await bus.connect(timeout=1.0)

    yield bus, correlation, state_cache, fake_paho

    await bus.close()


@pytest.mark.asyncio
async def test_subscribes_to_ack_and_state(transport, topics):
    _, _, _, events = transport

    assert (topics.ack, 1) in events["subscribed"]
    assert (topics.state, 1) in events["subscribed"]
    assert (topics.command, 1) not in events["subscribed"]


@pytest.mark.asyncio
async def test_publish_serialises_json(transport, topics):
    bus, _, _, events = transport

    await bus.publish(topics.command, {"id": "1", "type": "say", "payload": {"text": "やあ"}})

    topic, payload, qos, _ = events["published"][0]
    assert topic == topics.command
    assert qos == 1
    assert json.loads(payload.decode("utf-8"))["payload"]["text"] == "やあ"
    assert "やあ".encode("utf-8") in payload


@pytest.mark.asyncio
async def test_ack_resolves_pending_request(transport, topics):
    bus, correlation, _, _ = transport
    future = correlation.register("req-1", timeout=5.0)

    bus.handle_message(topics.ack, b'{"id": "req-1", "status": "ok", "message": "done"}')

    ack = await future
    assert ack.message == "done"


@pytest.mark.asyncio
async def test_malformed_ack_is_dropped(transport, topics):
    bus, correlation, _, _ = transport
    future = correlation.register("req-1", timeout=5.0)

    bus.handle_message(topics.ack, b"not json")
    bus.handle_message(topics.ack, b'{"id": "req-1", "status": "maybe"}')

    assert not future.done()
    assert len(correlation) == 1


@pytest.mark.asyncio
async def test_state_is_stamped_with_local_time(transport, topics, clock):
    bus, _, state_cache, _ = transport

    bus.handle_message(topics.state, b'{"battery": 42, "updatedAt": "1999-01-01T00:00:00Z"}')

    snapshot = state_cache.latest
    assert snapshot is not None
    assert snapshot.captured_at == clock()
    assert state_cache.get_fresh(30.0) is snapshot


@pytest.mark.asyncio
async def test_malformed_state_keeps_previous_snapshot(transport, topics):
    bus, _, state_cache, _ = transport
    bus.handle_message(topics.state, b'{"battery": 42}')
    previous = state_cache.latest

    bus.handle_message(topics.state, b"{broken")
    bus.handle_message(topics.state, b"[1, 2, 3]")

    assert state_cache.latest is previous


@pytest.mark.asyncio
async def test_inbound_messages_arrive_through_client(transport, topics):
    _, _, state_cache, events = transport

    events["clients"][0].deliver(topics.state, b'{"battery": 55}')
    for _ in range(3):
        await asyncio.sleep(0)

    assert state_cache.latest is not None
    assert state_cache.latest.battery == 55


@pytest.mark.asyncio
async def test_close_fails_pending_requests(transport):
    bus, correlation, _, _ = transport
    future = correlation.register("req-1", timeout=5.0)

    await bus.close()

    assert bus.closed
    with pytest.raises(BusTransportError):
        await future
    with pytest.raises(BusTransportError):
        await bus.publish("stackchan/cmd", {})


@pytest.mark.asyncio
async def test_async_context_manager_connects_and_closes(fake_paho, topics):
    bus = BusTransport(
        MQTTClient(BusConfig(), client_id="bridge-2"), topics, CorrelationTable(), StateCache()
    )

    async with bus:
        assert bus.is_connected

    assert bus.closed
    assert fake_paho["disconnect_called"] is True
