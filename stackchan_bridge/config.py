"""Configuration loader for stackchan-bridge."""

from __future__ import annotations

import logging
import os
from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from . import constants

LOGGER = logging.getLogger(__name__)

SECRET_OPTIONS = {"password", "api_key", "key", "token"}

_TLS_SCHEMES = {"mqtts", "ssl", "tls", "wss"}


class ConfigurationError(RuntimeError):
    """Raised when a required configuration value is missing."""


@dataclass(slots=True)
class BusConfig:
    url: str = constants.DEFAULT_MQTT_URL
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    keepalive: int = 60
    connect_timeout_seconds: float = 10.0
    reconnect_period_seconds: float = 2.0
    publish_timeout_seconds: float = 5.0

    @property
    def host(self) -> str:
        return parse_bus_url(self.url)[0]

    @property
    def port(self) -> int:
        return parse_bus_url(self.url)[1]

    @property
    def use_tls(self) -> bool:
        return parse_bus_url(self.url)[2]


@dataclass(slots=True)
class TopicConfig:
    command: str = constants.DEFAULT_COMMAND_TOPIC
    ack: str = constants.DEFAULT_ACK_TOPIC
    state: str = constants.DEFAULT_STATE_TOPIC
    notify: str = constants.DEFAULT_NOTIFY_TOPIC


@dataclass(slots=True)
class CommandConfig:
    ack_timeout_seconds: float = 8.0
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    state_max_age_seconds: float = 30.0


@dataclass(slots=True)
class ChatConfig:
    allowed_users: List[str] = field(default_factory=list)


@dataclass(slots=True)
class LLMConfig:
    api_key: Optional[str] = None
    model: str = constants.DEFAULT_LLM_MODEL


@dataclass(slots=True)
class DueSoonConfig:
    key: Optional[str] = None
    token: Optional[str] = None
    board_id: Optional[str] = None
    api_url: str = constants.DEFAULT_TRELLO_API_URL
    poll_interval_seconds: float = 300.0
    window_minutes: int = 120
    say_via_command: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.key and self.token and self.board_id)


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class BridgeConfig:
    bus: BusConfig
    topics: TopicConfig
    commands: CommandConfig
    chat: ChatConfig
    llm: LLMConfig
    due_soon: DueSoonConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path

    @property
    def allowed_users(self) -> List[str]:
        return list(self.chat.allowed_users)


def _ms_to_seconds(value: str) -> str:
    return str(float(value) / 1000.0)


def _lower(value: str) -> str:
    return value.strip().lower()


# Environment keys accepted on top of the config file: key -> (section, option, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Optional[Callable[[str], str]]]] = {
    "MQTT_URL": ("bus", "url", None),
    "MQTT_USERNAME": ("bus", "username", None),
    "MQTT_PASSWORD": ("bus", "password", None),
    "MQTT_CLIENT_ID": ("bus", "client_id", None),
    "STACKCHAN_CMD_TOPIC": ("topics", "command", None),
    "STACKCHAN_ACK_TOPIC": ("topics", "ack", None),
    "STACKCHAN_STATE_TOPIC": ("topics", "state", None),
    "TRELLO_NOTIFY_TOPIC": ("topics", "notify", None),
    "MQTT_COMMAND_MAX_ATTEMPTS": ("commands", "max_attempts", None),
    "MQTT_COMMAND_BASE_DELAY_MS": ("commands", "base_delay_seconds", _ms_to_seconds),
    "MQTT_COMMAND_TIMEOUT_MS": ("commands", "ack_timeout_seconds", _ms_to_seconds),
    "ALLOWED_SLACK_USER_IDS": ("chat", "allowed_users", None),
    "OPENAI_API_KEY": ("llm", "api_key", None),
    "OPENAI_MODEL_FAST": ("llm", "model", None),
    "TRELLO_KEY": ("due_soon", "key", None),
    "TRELLO_TOKEN": ("due_soon", "token", None),
    "TRELLO_BOARD_ID": ("due_soon", "board_id", None),
    "TRELLO_POLL_INTERVAL_MS": ("due_soon", "poll_interval_seconds", _ms_to_seconds),
    "TRELLO_DUE_SOON_MINUTES": ("due_soon", "window_minutes", None),
    "TRELLO_SAY_VIA_CMD": ("due_soon", "say_via_command", _lower),
    "LOG_LEVEL": ("logging", "level", None),
}


def parse_bus_url(url: str) -> Tuple[str, int, bool]:
    """Split a broker URL such as ``mqtt://host:1883`` into host, port and TLS flag."""

    if "://" not in url:
        url = f"mqtt://{url}"
    parsed = urlparse(url)
    use_tls = parsed.scheme.lower() in _TLS_SCHEMES
    host = parsed.hostname or "localhost"
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is None:
        port = constants.DEFAULT_MQTTS_PORT if use_tls else constants.DEFAULT_MQTT_PORT
    return host, port, use_tls


def _parse_list(value: str, *, default: Iterable[str] = ()) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _optional(parser: ConfigParser, section: str, option: str) -> Optional[str]:
    value = parser.get(section, option, fallback="")
    return value or None


def _apply_environment(parser: ConfigParser, environ: Mapping[str, str]) -> None:
    for key, (section, option, converter) in ENV_OVERRIDES.items():
        value = environ.get(key)
        if value is None or value == "":
            continue
        if converter is not None:
            try:
                value = converter(value)
            except ValueError:
                LOGGER.warning("Ignoring invalid value for %s: %r", key, value)
                continue
        parser.set(section, option, value)


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> BridgeConfig:
    """Load configuration from disk and the environment, applying defaults."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser(interpolation=None)
    parser.read_dict(
        {
            "bus": {
                "url": constants.DEFAULT_MQTT_URL,
                "keepalive": "60",
                "connect_timeout_seconds": "10.0",
                "reconnect_period_seconds": "2.0",
                "publish_timeout_seconds": "5.0",
            },
            "topics": {
                "command": constants.DEFAULT_COMMAND_TOPIC,
                "ack": constants.DEFAULT_ACK_TOPIC,
                "state": constants.DEFAULT_STATE_TOPIC,
                "notify": constants.DEFAULT_NOTIFY_TOPIC,
            },
            "commands": {
                "ack_timeout_seconds": "8.0",
                "max_attempts": "3",
                "base_delay_seconds": "1.0",
                "state_max_age_seconds": "30.0",
            },
            "chat": {
                "allowed_users": "",
            },
            "llm": {
                "model": constants.DEFAULT_LLM_MODEL,
            },
            "due_soon": {
                "api_url": constants.DEFAULT_TRELLO_API_URL,
                "poll_interval_seconds": "300",
                "window_minutes": "120",
                "say_via_command": "false",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path, encoding="utf-8")

    _apply_environment(parser, os.environ if environ is None else environ)

    bus = BusConfig(
        url=parser.get("bus", "url"),
        username=_optional(parser, "bus", "username"),
        password=_optional(parser, "bus", "password"),
        client_id=_optional(parser, "bus", "client_id"),
        keepalive=max(5, parser.getint("bus", "keepalive", fallback=60)),
        connect_timeout_seconds=max(
            0.0, parser.getfloat("bus", "connect_timeout_seconds", fallback=10.0)
        ),
        reconnect_period_seconds=max(
            0.1, parser.getfloat("bus", "reconnect_period_seconds", fallback=2.0)
        ),
        publish_timeout_seconds=max(
            0.1, parser.getfloat("bus", "publish_timeout_seconds", fallback=5.0)
        ),
    )

    topics = TopicConfig(
        command=parser.get("topics", "command"),
        ack=parser.get("topics", "ack"),
        state=parser.get("topics", "state"),
        notify=parser.get("topics", "notify"),
    )

    commands = CommandConfig(
        ack_timeout_seconds=max(
            0.0, parser.getfloat("commands", "ack_timeout_seconds", fallback=8.0)
        ),
        max_attempts=max(1, parser.getint("commands", "max_attempts", fallback=3)),
        base_delay_seconds=max(
            0.0, parser.getfloat("commands", "base_delay_seconds", fallback=1.0)
        ),
        state_max_age_seconds=max(
            0.0, parser.getfloat("commands", "state_max_age_seconds", fallback=30.0)
        ),
    )

    chat = ChatConfig(
        allowed_users=_parse_list(parser.get("chat", "allowed_users", fallback="")),
    )

    llm = LLMConfig(
        api_key=_optional(parser, "llm", "api_key"),
        model=parser.get("llm", "model", fallback=constants.DEFAULT_LLM_MODEL),
    )

    due_soon = DueSoonConfig(
        key=_optional(parser, "due_soon", "key"),
        token=_optional(parser, "due_soon", "token"),
        board_id=_optional(parser, "due_soon", "board_id"),
        api_url=parser.get(
            "due_soon", "api_url", fallback=constants.DEFAULT_TRELLO_API_URL
        ),
        poll_interval_seconds=max(
            constants.MIN_DUE_SOON_POLL_SECONDS,
            parser.getfloat("due_soon", "poll_interval_seconds", fallback=300.0),
        ),
        window_minutes=max(
            1, parser.getint("due_soon", "window_minutes", fallback=120)
        ),
        say_via_command=parser.getboolean(
            "due_soon", "say_via_command", fallback=False
        ),
    )

    log_path = _optional(parser, "logging", "path")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path).expanduser() if log_path else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return BridgeConfig(
        bus=bus,
        topics=topics,
        commands=commands,
        chat=chat,
        llm=llm,
        due_soon=due_soon,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )


def require_credentials(config: BridgeConfig) -> None:
    """Fail fast when credentials the running bridge cannot do without are absent."""

    missing = []
    if not config.llm.api_key:
        missing.append("llm.api_key (OPENAI_API_KEY)")
    if missing:
        raise ConfigurationError(
            "Missing required configuration: " + ", ".join(missing)
        )


def iter_masked(config: BridgeConfig) -> Iterable[Tuple[str, List[Tuple[str, str]]]]:
    """Yield each section with secret values masked, for display."""

    for section in config.raw.sections():
        items = []
        for key, value in config.raw[section].items():
            if key in SECRET_OPTIONS and value:
                value = "********"
            items.append((key, value))
        yield section, items
