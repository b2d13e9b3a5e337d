"""Terminal chat surface for running the bridge without a chat platform."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Mapping, Optional, Sequence, TextIO

from .confirmation import APPROVE_ACTION_ID, DENY_ACTION_ID
from .router import ChatRouter

LOGGER = logging.getLogger(__name__)

SLASH_PREFIX = "/stack"
YES_ANSWERS = {"y", "yes", "はい"}
NO_ANSWERS = {"n", "no", "いいえ"}


def _approve_value(blocks: Sequence[Mapping[str, Any]]) -> Optional[str]:
    for block in blocks:
        for element in block.get("elements", ()):
            if element.get("action_id") == APPROVE_ACTION_ID:
                return element.get("value")
    return None


class ConsoleSurface:
    """Prints replies and remembers the latest pending prompt per user."""

    def __init__(self, output: Optional[TextIO] = None) -> None:
        self._output = output
        self.pending: dict[str, str] = {}

    async def send_text(self, user_id: str, text: str) -> None:
        self._write(f"stackchan> {text}")

    async def send_prompt(
        self, user_id: str, text: str, blocks: Sequence[Mapping[str, Any]]
    ) -> None:
        value = _approve_value(blocks)
        if value is not None:
            self.pending[user_id] = value
        self._write(f"stackchan> {text} [y/n]")

    def _write(self, line: str) -> None:
        print(line, file=self._output, flush=True)


class ConsoleSession:
    """Reads lines and feeds them to the router as one requester."""

    def __init__(
        self,
        router: ChatRouter,
        surface: ConsoleSurface,
        *,
        user_id: str,
        read_line: Optional[Callable[[], str]] = None,
    ) -> None:
        self._router = router
        self._surface = surface
        self._user_id = user_id
        self._read_line = read_line or (lambda: input("you> "))

    async def run(self) -> None:
        """Process lines until end of input.

        Lines are read on a daemon thread so a pending read never blocks
        interpreter shutdown.
        """

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue()

        def _reader() -> None:
            while True:
                try:
                    line: Optional[str] = self._read_line()
                except EOFError:
                    line = None
                try:
                    loop.call_soon_threadsafe(queue.put_nowait, line)
                except RuntimeError:
                    return
                if line is None:
                    return

        threading.Thread(target=_reader, name="console-reader", daemon=True).start()

        while True:
            line = await queue.get()
            if line is None:
                return
            await self.handle_line(line)

    async def handle_line(self, line: str) -> None:
        text = line.strip()
        if not text:
            return

        pending = self._surface.pending.pop(self._user_id, None)
        if pending is not None:
            answer = text.lower()
            if answer in YES_ANSWERS:
                await self._router.handle_action(APPROVE_ACTION_ID, pending, self._user_id)
                return
            if answer in NO_ANSWERS:
                await self._router.handle_action(DENY_ACTION_ID, pending, self._user_id)
                return
            LOGGER.debug("Pending confirmation abandoned by new input")

        if text.startswith(SLASH_PREFIX):
            await self._router.handle_slash_command(
                self._user_id, text[len(SLASH_PREFIX):]
            )
        else:
            await self._router.handle_message(self._user_id, text)
