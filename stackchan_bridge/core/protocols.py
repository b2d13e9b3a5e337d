"""Protocol definitions for the collaborators around the command core."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, Sequence


MessageHandler = Callable[[str, bytes], Awaitable[None] | None]


class BusPublisher(Protocol):
    """Minimal contract for one-way publishing onto the bus."""

    async def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        """Serialise ``payload`` as JSON and publish it once.

        Raises:
            BusTransportError: If the broker does not accept the publish.
        """
        ...


class ChatSurface(Protocol):
    """Outbound side of the chat platform, addressed per requester."""

    async def send_text(self, user_id: str, text: str) -> None:
        """Deliver a plain text message to ``user_id``."""
        ...

    async def send_prompt(
        self, user_id: str, text: str, blocks: Sequence[Mapping[str, Any]]
    ) -> None:
        """Deliver an interactive yes/no prompt to ``user_id``."""
        ...


class LanguageModel(Protocol):
    async def chat(self, requester_id: str, text: str) -> str: ...

    async def due_soon_to_speech(
        self, cards: Sequence[Mapping[str, Any]]
    ) -> Optional[str]: ...
