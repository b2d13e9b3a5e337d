"""Main application entry-point for stackchan-bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from typing import Awaitable, Callable, Optional

from . import constants
from .adapters.llm import LanguageModelClient
from .adapters.mqtt import MQTTClient
from .config import BridgeConfig, load_config
from .confirmation import ConfirmationCoordinator
from .console import ConsoleSession, ConsoleSurface
from .core import ChatSurface, CorrelationTable, LanguageModel, StateCache
from .dispatcher import CommandDispatcher, RetryPolicy
from .due_soon import DueSoonPoller, TrelloClient
from .logging import configure_logging
from .router import ChatRouter
from .transport import BusTransport

LOGGER = logging.getLogger(__name__)


class BridgeApp:
    """Coordinates application startup and shutdown.

    Wires the bus transport, correlation table, state cache, dispatcher,
    confirmation coordinator and chat router together, plus the optional
    due-soon poller. Collaborators can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        surface: Optional[ChatSurface] = None,
        mqtt_client: Optional[MQTTClient] = None,
        llm: Optional[LanguageModel] = None,
        due_soon_source: Optional[TrelloClient] = None,
    ) -> None:
        self.config = config or load_config()

        self.correlation = CorrelationTable()
        self.state_cache = StateCache()
        client = mqtt_client or MQTTClient(
            self.config.bus, client_id=build_client_id(self.config)
        )
        self.transport = BusTransport(
            client, self.config.topics, self.correlation, self.state_cache
        )
        self.dispatcher = CommandDispatcher(
            self.transport,
            self.correlation,
            self.state_cache,
            command_topic=self.config.topics.command,
            policy=RetryPolicy.from_config(self.config.commands),
            state_max_age=self.config.commands.state_max_age_seconds,
        )
        self.coordinator = ConfirmationCoordinator(
            self.dispatcher, allowed_users=self.config.allowed_users
        )
        self.llm = llm
        self.router: Optional[ChatRouter] = (
            ChatRouter(surface, self.dispatcher, self.coordinator, llm)
            if surface is not None
            else None
        )
        self._due_soon_source = due_soon_source or TrelloClient(self.config.due_soon)
        self.poller = DueSoonPoller(
            self.config.due_soon,
            self._due_soon_source,
            self.dispatcher,
            notify_topic=self.config.topics.notify,
            command_topic=self.config.topics.command,
            llm=llm,
        )
        self._shutdown_event: Optional[asyncio.Event] = None
        self._started = False
        self._stopped = False

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        connected = await self.transport.connect()
        if not connected:
            LOGGER.warning("Starting without a broker connection; commands will retry")
        self.poller.start()
        LOGGER.info("stackchan-bridge started")

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        LOGGER.info("stackchan-bridge stopping")

        self.coordinator.close()
        self.dispatcher.close()
        try:
            await self.poller.stop()
        finally:
            try:
                await self.transport.close()
            finally:
                await self._due_soon_source.aclose()

                aclose = getattr(self.llm, "aclose", None)
                if aclose is not None:
                    await aclose()

                if self._shutdown_event is not None:
                    self._shutdown_event.set()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(
        self, foreground: Optional[Callable[[], Awaitable[None]]] = None
    ) -> None:
        """Run until a shutdown signal, or until ``foreground`` returns."""

        self._shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_shutdown)

        foreground_task: Optional[asyncio.Task[None]] = None
        try:
            await self.start()
            if foreground is not None:
                foreground_task = asyncio.create_task(foreground())
                foreground_task.add_done_callback(lambda _: self.request_shutdown())
            LOGGER.info("stackchan-bridge active; awaiting shutdown signal")
            await self._shutdown_event.wait()
        finally:
            if foreground_task is not None and not foreground_task.done():
                foreground_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await foreground_task
            await self.stop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(sig)

    @classmethod
    def start_console(cls, config: BridgeConfig, *, user_id: str) -> None:
        """Run the bridge with the terminal as chat surface, blocking until exit."""

        configure_logging(
            config.logging.level,
            log_path=config.logging.path,
            log_network=config.logging.log_network,
        )

        async def _main() -> None:
            surface = ConsoleSurface()
            llm = LanguageModelClient(config.llm)
            instance = cls(config, surface=surface, llm=llm)
            router = instance.router
            if router is None:
                raise RuntimeError("Console session requires a chat router")
            session = ConsoleSession(router, surface, user_id=user_id)
            await instance.run(session.run)

        try:
            asyncio.run(_main())
        except KeyboardInterrupt:
            LOGGER.info("stackchan-bridge received shutdown signal")


def build_client_id(config: BridgeConfig) -> str:
    if config.bus.client_id:
        return config.bus.client_id
    return f"{constants.APP_NAME}-{os.getpid()}"
