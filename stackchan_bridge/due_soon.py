"""Periodic due-date alerts from a Trello board onto the bus."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import aiohttp

from . import constants
from .adapters.llm import LanguageModelError
from .adapters.mqtt import BusTransportError
from .config import DueSoonConfig
from .core import BusPublisher, LanguageModel
from .dispatcher import new_request_id

LOGGER = logging.getLogger(__name__)

NOTIFICATION_TYPE = "trello_due_soon"
CARD_FIELDS = "name,due,url,dueComplete,idList"


class DueSoonSourceError(RuntimeError):
    """Raised when the due-date source answers with an error."""


@dataclass(slots=True, frozen=True)
class DueCard:
    id: str
    name: str
    due: str
    url: Optional[str]
    due_at: datetime
    due_in_minutes: int
    list_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "due": self.due,
            "url": self.url,
            "dueMs": int(self.due_at.timestamp() * 1000),
            "dueInMinutes": self.due_in_minutes,
            "idList": self.list_id,
        }


def _parse_due(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def select_due_soon(
    cards: Sequence[Mapping[str, Any]], *, now: datetime, window: timedelta
) -> List[DueCard]:
    """Incomplete cards due between ``now`` and ``now + window``, soonest first."""

    upcoming: List[DueCard] = []
    for card in cards:
        if not isinstance(card, Mapping):
            LOGGER.debug("Skipping non-object card entry %r", card)
            continue
        due = card.get("due")
        if not due or card.get("dueComplete"):
            continue
        try:
            due_at = _parse_due(str(due))
        except ValueError:
            LOGGER.debug("Skipping card %s with unparsable due %r", card.get("id"), due)
            continue
        remaining = due_at - now
        if remaining < timedelta(0) or remaining > window:
            continue
        upcoming.append(
            DueCard(
                id=str(card.get("id", "")),
                name=str(card.get("name", "")),
                due=str(due),
                url=card.get("url"),
                due_at=due_at,
                due_in_minutes=round(remaining.total_seconds() / 60),
                list_id=card.get("idList"),
            )
        )
    upcoming.sort(key=lambda item: item.due_at)
    return upcoming


class TrelloClient:
    """Fetches board cards over the Trello REST API."""

    def __init__(
        self,
        config: DueSoonConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self._base_url = config.api_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def fetch_cards(self, timeout: float = 10.0) -> List[Dict[str, Any]]:
        """Return the raw card list of the configured board.

        Raises:
            DueSoonSourceError: On a non-2xx response or unexpected body.
            aiohttp.ClientError: If the HTTP request fails.
            asyncio.TimeoutError: If the request exceeds ``timeout``.
        """

        session = self._ensure_session()
        url = f"{self._base_url}/1/boards/{self.config.board_id}/cards"
        params = {
            "fields": CARD_FIELDS,
            "key": self.config.key or "",
            "token": self.config.token or "",
        }

        async with asyncio.timeout(timeout):
            async with session.get(url, params=params) as response:
                if response.status >= 400:
                    raise DueSoonSourceError(f"Trello HTTP {response.status}")
                body = await response.json()

        if not isinstance(body, list):
            raise DueSoonSourceError("Trello response is not a card list")
        return body

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session


class DueSoonPoller:
    """Polls the board and publishes one-way due-soon notifications."""

    def __init__(
        self,
        config: DueSoonConfig,
        source: TrelloClient,
        publisher: BusPublisher,
        *,
        notify_topic: str,
        command_topic: str,
        llm: Optional[LanguageModel] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        id_factory: Callable[[], str] = new_request_id,
    ) -> None:
        self._config = config
        self._source = source
        self._publisher = publisher
        self._notify_topic = notify_topic
        self._command_topic = command_topic
        self._llm = llm
        self._clock = clock
        self._id_factory = id_factory
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def interval(self) -> float:
        return max(constants.MIN_DUE_SOON_POLL_SECONDS, self._config.poll_interval_seconds)

    def start(self) -> bool:
        if not self._config.enabled:
            LOGGER.info("Due-soon poller disabled (missing key/token/board_id)")
            return False
        if self._task is not None and not self._task.done():
            return True

        LOGGER.info(
            "Starting due-soon poller (interval=%.0fs, window=%dmin, board=%s, topic=%s)",
            self.interval,
            self._config.window_minutes,
            self._config.board_id,
            self._notify_topic,
        )
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        return True

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            LOGGER.info("Due-soon poller stopped")

    async def poll_once(self) -> Optional[Dict[str, Any]]:
        """Run one poll; returns the published notification, if any."""

        cards = await self._source.fetch_cards()
        now = self._clock()
        upcoming = select_due_soon(
            cards, now=now, window=timedelta(minutes=self._config.window_minutes)
        )
        LOGGER.info("Due-soon poll: total=%d upcoming=%d", len(cards), len(upcoming))
        if not upcoming:
            return None

        card_payloads = [card.to_payload() for card in upcoming]
        payload: Dict[str, Any] = {
            "type": NOTIFICATION_TYPE,
            "generatedAt": now.isoformat(),
            "boardId": self._config.board_id,
            "dueSoonMinutes": self._config.window_minutes,
            "cards": card_payloads,
        }

        say_text: Optional[str] = None
        if self._llm is not None:
            try:
                say_text = await self._llm.due_soon_to_speech(card_payloads)
            except LanguageModelError as exc:
                LOGGER.warning("Due-soon speech generation failed: %s", exc)
        if say_text:
            payload["sayText"] = say_text

        await self._publisher.publish(self._notify_topic, payload)

        if say_text and self._config.say_via_command:
            command = {
                "id": self._id_factory(),
                "type": "say",
                "payload": {"text": say_text},
            }
            await self._publisher.publish(self._command_topic, command)
            LOGGER.info("Due-soon reminder sent to command topic (id=%s)", command["id"])

        return payload

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except (
                DueSoonSourceError,
                BusTransportError,
                aiohttp.ClientError,
                asyncio.TimeoutError,
                ValueError,
            ) as exc:
                LOGGER.error("Due-soon poll failed: %s", exc)
            except Exception:
                LOGGER.exception("Unexpected error during due-soon poll")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
