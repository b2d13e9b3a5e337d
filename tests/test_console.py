"""Tests for the terminal chat surface."""

import io
from typing import List, Tuple

import pytest

from stackchan_bridge.confirmation import APPROVE_ACTION_ID, DENY_ACTION_ID
from stackchan_bridge.console import ConsoleSession, ConsoleSurface


class RecordingRouter:
    def __init__(self) -> None:
        self.calls: List[Tuple] = []

    async def handle_slash_command(self, user_id, text):
        self.calls.append(("slash", user_id, text))

    async def handle_message(self, user_id, text, **kwargs):
        self.calls.append(("message", user_id, text))

    async def handle_action(self, action_id, value, user_id):
        self.calls.append(("action", action_id, value, user_id))


def _blocks(value: str):
    return [
        {"type": "section"},
        {
            "type": "actions",
            "elements": [
                {"action_id": APPROVE_ACTION_ID, "value": value},
                {"action_id": DENY_ACTION_ID},
            ],
        },
    ]


@pytest.mark.asyncio
async def test_surface_prints_and_remembers_prompt() -> None:
    output = io.StringIO()
    surface = ConsoleSurface(output)

    await surface.send_text("me", "hello")
    await surface.send_prompt("me", "ok?", _blocks("encoded"))

    assert output.getvalue() == "stackchan> hello\nstackchan> ok? [y/n]\n"
    assert surface.pending == {"me": "encoded"}


@pytest.mark.asyncio
async def test_session_routes_lines() -> None:
    router = RecordingRouter()
    surface = ConsoleSurface(io.StringIO())
    session = ConsoleSession(router, surface, user_id="me")

    await session.handle_line("/stack volume 50")
    await session.handle_line("  ")
    await session.handle_line("こんにちは")

    assert router.calls == [
        ("slash", "me", " volume 50"),
        ("message", "me", "こんにちは"),
    ]


@pytest.mark.asyncio
async def test_session_answers_pending_prompt() -> None:
    router = RecordingRouter()
    surface = ConsoleSurface(io.StringIO())
    session = ConsoleSession(router, surface, user_id="me")

    await surface.send_prompt("me", "ok?", _blocks("first"))
    await session.handle_line("Y")
    await surface.send_prompt("me", "ok?", _blocks("second"))
    await session.handle_line("no")

    assert router.calls == [
        ("action", APPROVE_ACTION_ID, "first", "me"),
        ("action", DENY_ACTION_ID, "second", "me"),
    ]
    assert surface.pending == {}


@pytest.mark.asyncio
async def test_new_input_abandons_pending_prompt() -> None:
    router = RecordingRouter()
    surface = ConsoleSurface(io.StringIO())
    session = ConsoleSession(router, surface, user_id="me")

    await surface.send_prompt("me", "ok?", _blocks("first"))
    await session.handle_line("status")

    assert router.calls == [("message", "me", "status")]
    assert surface.pending == {}


@pytest.mark.asyncio
async def test_run_stops_at_end_of_input() -> None:
    router = RecordingRouter()
    lines = iter(["hello", "/stack status"])

    def read_line() -> str:
        try:
            return next(lines)
        except StopIteration:
            raise EOFError from None

    session = ConsoleSession(router, ConsoleSurface(io.StringIO()), user_id="me", read_line=read_line)

    await session.run()

    assert router.calls == [("message", "me", "hello"), ("slash", "me", " status")]
