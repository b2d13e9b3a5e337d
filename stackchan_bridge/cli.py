"""Command-line interface for stackchan-bridge."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import getpass
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Callable, Optional

from . import constants
from .adapters.mqtt import BusTransportError, MQTTClient
from .app import BridgeApp
from .config import (
    BridgeConfig,
    ConfigurationError,
    iter_masked,
    load_config,
    require_credentials,
)
from .core import CommandTimeoutError
from .interpreter import CommandParseError, is_dangerous, parse_command
from .logging import configure_logging
from .router import format_ack, format_state
from .simulator import DeviceSimulator

LOGGER = logging.getLogger(__name__)

STATE_POLL_SECONDS = 0.25


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackchan-bridge", description="Chat bridge for a Stack-chan robot over MQTT"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    start_parser = subparsers.add_parser(
        "start", help="Start the bridge with the terminal as chat surface"
    )
    start_parser.add_argument(
        "--user", default=None, help="Requester id for console input (default: login name)"
    )

    send_parser = subparsers.add_parser("send", help="Send one command and print the ack")
    send_parser.add_argument("text", help="Command text, e.g. 'volume 50' or 'say hello'")
    send_parser.add_argument("--user", default=None, help="Requester id (default: login name)")
    send_parser.add_argument(
        "-y", "--yes", action="store_true", help="Skip the confirmation for risky commands"
    )

    state_parser = subparsers.add_parser("state", help="Print the latest device state")
    state_parser.add_argument(
        "--wait",
        type=float,
        default=5.0,
        help="Seconds to wait for a state report (default: 5)",
    )

    subparsers.add_parser("simulate", help="Run a simulated robot on the bus")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def _default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "console"


def _setup_logging(config: BridgeConfig) -> None:
    configure_logging(
        config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
    )


async def _send(
    config: BridgeConfig, text: str, user_id: str, *, confirm: Callable[[str], bool]
) -> int:
    try:
        command = parse_command(text, user_id)
    except CommandParseError as exc:
        print(f"Could not parse command: {exc}\n{exc.hint}", file=sys.stderr)
        return 1

    prompt = f"{command.type.value} is a strong setting. Send it? [y/N] "
    if is_dangerous(command) and not confirm(prompt):
        print("Cancelled.")
        return 1

    app = BridgeApp(config)
    try:
        await app.transport.connect()
        ack = await app.dispatcher.send_command(command)
    except (BusTransportError, CommandTimeoutError) as exc:
        LOGGER.error("Sending %s failed: %s", command.type.value, exc)
        return 1
    finally:
        await app.stop()

    print(format_ack(ack))
    return 0 if ack.ok else 1


async def _state(config: BridgeConfig, wait: float) -> int:
    app = BridgeApp(config)
    try:
        if not await app.transport.connect():
            LOGGER.error("Could not connect to %s", config.bus.url)
            return 1
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, wait)
        snapshot = app.dispatcher.get_fresh_state()
        while snapshot is None and loop.time() < deadline:
            await asyncio.sleep(STATE_POLL_SECONDS)
            snapshot = app.dispatcher.get_fresh_state()
    finally:
        await app.stop()

    print(format_state(snapshot))
    return 0 if snapshot is not None else 1


async def _simulate(config: BridgeConfig) -> None:
    client = MQTTClient(
        config.bus, client_id=f"{constants.APP_NAME}-simulator-{os.getpid()}"
    )
    simulator = DeviceSimulator(client, config.topics)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, simulator.stop)
    LOGGER.info("Simulating Stack-chan on %s", config.bus.url)
    await simulator.run()


def _confirm(prompt: str) -> bool:
    try:
        return input(prompt).strip().lower() in {"y", "yes"}
    except EOFError:
        return False


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "start":
        try:
            require_credentials(config)
        except ConfigurationError as exc:
            configure_logging(config.logging.level)
            LOGGER.error("%s", exc)
            return 1
        BridgeApp.start_console(config, user_id=args.user or _default_user())
        return 0

    if args.command == "send":
        _setup_logging(config)
        confirm = (lambda _: True) if args.yes else _confirm
        return asyncio.run(
            _send(config, args.text, args.user or _default_user(), confirm=confirm)
        )

    if args.command == "state":
        _setup_logging(config)
        return asyncio.run(_state(config, args.wait))

    if args.command == "simulate":
        _setup_logging(config)
        try:
            asyncio.run(_simulate(config))
        except KeyboardInterrupt:
            pass
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section, items in iter_masked(config):
            print(f"[{section}]")
            for key, value in items:
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
