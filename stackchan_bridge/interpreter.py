"""Free-text interpretation into intents and typed device commands."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .models import (
    BrightnessPayload,
    Command,
    CommandType,
    ExpressionPayload,
    Intent,
    ListenPayload,
    MotionPayload,
    SayPayload,
    StatusPayload,
    VolumePayload,
)

COMMAND_KEYWORDS = (
    "say",
    "volume",
    "motion",
    "expression",
    "listen",
    "brightness",
    "status",
)
QUERY_KEYWORDS = (
    "status",
    "state",
    "battery",
    "temperature",
    "明るさ",
    "温度",
    "バッテリー",
)

# Values above this need explicit confirmation before dispatch.
RISK_LEVEL_THRESHOLD = 80

USAGE_HINT = "使い方: /stack <say|volume|motion|expression|listen|brightness|status> ..."

_VOLUME_RE = re.compile(r"volume\s+(\d{1,3})(?!\d)")
_MOTION_RE = re.compile(r"motion\s+([a-z0-9_-]+)")
_EXPRESSION_RE = re.compile(r"expression\s+([a-z0-9_-]+)")
_BRIGHTNESS_RE = re.compile(r"brightness\s+(\d{1,3})(?!\d)")


class CommandParseError(ValueError):
    """Raised when text cannot be turned into a valid command."""

    def __init__(self, message: str, *, hint: str = USAGE_HINT) -> None:
        super().__init__(message)
        self.hint = hint


@dataclass(slots=True, frozen=True)
class Interpretation:
    intent: Intent
    command: Optional[Command] = None


def _contains_any(lower: str, keywords) -> bool:
    return any(keyword in lower for keyword in keywords)


def classify(text: str) -> Intent:
    lower = text.lower()
    if _contains_any(lower, QUERY_KEYWORDS):
        return Intent.QUERY
    if _contains_any(lower, COMMAND_KEYWORDS):
        return Intent.COMMAND
    return Intent.CHAT


def _level(match: re.Match, name: str) -> int:
    value = int(match.group(1))
    if value < 0 or value > 100:
        raise CommandParseError(
            f"{name} must be between 0 and 100, got {value}",
            hint=f"{name} は 0〜100 で指定してね（例: `/stack {name} 50`）",
        )
    return value


def parse_command(text: str, requester_id: str) -> Command:
    """Parse ``text`` into a command; patterns are tried in a fixed order.

    Raises:
        CommandParseError: If no pattern matches or a value is out of range.
    """

    lower = text.lower()

    def build(command_type: CommandType, payload) -> Command:
        return Command(
            type=command_type,
            payload=payload,
            requester_id=requester_id,
            original_text=text,
        )

    if lower.startswith("say "):
        content = text[4:].strip()
        if not content:
            raise CommandParseError("say requires text")
        return build(CommandType.SAY, SayPayload(text=content))

    match = _VOLUME_RE.search(lower)
    if match:
        return build(CommandType.VOLUME, VolumePayload(volume=_level(match, "volume")))

    match = _MOTION_RE.search(lower)
    if match:
        return build(CommandType.MOTION, MotionPayload(motion=match.group(1)))

    match = _EXPRESSION_RE.search(lower)
    if match:
        return build(
            CommandType.EXPRESSION, ExpressionPayload(expression=match.group(1))
        )

    match = _BRIGHTNESS_RE.search(lower)
    if match:
        return build(
            CommandType.BRIGHTNESS,
            BrightnessPayload(brightness=_level(match, "brightness")),
        )

    if "listen on" in lower:
        return build(CommandType.LISTEN, ListenPayload(listen=True))
    if "listen off" in lower:
        return build(CommandType.LISTEN, ListenPayload(listen=False))

    if _contains_any(lower, QUERY_KEYWORDS):
        return build(CommandType.STATUS, StatusPayload())

    raise CommandParseError(f"Unrecognised command: {text!r}")


def interpret(text: str, requester_id: str) -> Interpretation:
    """Classify ``text`` and, for commands and queries, parse it when possible."""

    intent = classify(text)
    if intent is Intent.CHAT:
        return Interpretation(intent=intent)
    try:
        command = parse_command(text, requester_id)
    except CommandParseError:
        command = None
    return Interpretation(intent=intent, command=command)


def is_dangerous(command: Command) -> bool:
    payload = command.payload
    if isinstance(payload, VolumePayload):
        return payload.volume > RISK_LEVEL_THRESHOLD
    if isinstance(payload, BrightnessPayload):
        return payload.brightness > RISK_LEVEL_THRESHOLD
    return False
