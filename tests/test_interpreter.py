"""Tests for free-text intent classification and command parsing."""

import pytest

from stackchan_bridge.interpreter import (
    CommandParseError,
    classify,
    interpret,
    is_dangerous,
    parse_command,
)
from stackchan_bridge.models import (
    BrightnessPayload,
    CommandType,
    ExpressionPayload,
    Intent,
    ListenPayload,
    MotionPayload,
    SayPayload,
    StatusPayload,
    VolumePayload,
)


@pytest.mark.parametrize(
    "text, intent",
    [
        ("status?", Intent.QUERY),
        ("バッテリーどう？", Intent.QUERY),
        ("What is the temperature", Intent.QUERY),
        ("volume 50", Intent.COMMAND),
        ("Please SAY hello", Intent.COMMAND),
        ("listen on", Intent.COMMAND),
        ("こんにちは！", Intent.CHAT),
        ("", Intent.CHAT),
    ],
)
def test_classify(text, intent) -> None:
    assert classify(text) is intent


def test_query_keywords_win_over_command_keywords() -> None:
    assert classify("volume and battery please") is Intent.QUERY


def test_parse_say_keeps_original_case() -> None:
    command = parse_command("Say Hello World  ", "U1")

    assert command.type is CommandType.SAY
    assert command.payload == SayPayload(text="Hello World")
    assert command.requester_id == "U1"
    assert command.original_text == "Say Hello World  "


def test_parse_say_japanese() -> None:
    command = parse_command("say こんにちは", "U1")

    assert command.payload == SayPayload(text="こんにちは")


def test_parse_say_requires_text() -> None:
    with pytest.raises(CommandParseError):
        parse_command("say    ", "U1")


@pytest.mark.parametrize("level", [0, 1, 50, 80, 99, 100])
def test_parse_volume_in_range(level) -> None:
    command = parse_command(f"volume {level}", "U1")

    assert command.payload == VolumePayload(volume=level)


@pytest.mark.parametrize("text", ["volume 101", "volume 999", "brightness 150"])
def test_parse_level_out_of_range(text) -> None:
    with pytest.raises(CommandParseError) as excinfo:
        parse_command(text, "U1")

    assert "0〜100" in excinfo.value.hint


def test_parse_rejects_four_digit_level() -> None:
    with pytest.raises(CommandParseError):
        parse_command("volume 1000", "U1")


def test_parse_motion_expression_brightness() -> None:
    assert parse_command("motion wave", "U1").payload == MotionPayload(motion="wave")
    assert parse_command("expression HAPPY", "U1").payload == ExpressionPayload(
        expression="happy"
    )
    assert parse_command("brightness 40", "U1").payload == BrightnessPayload(brightness=40)


def test_parse_listen_on_off() -> None:
    assert parse_command("listen on", "U1").payload == ListenPayload(listen=True)
    assert parse_command("Listen OFF", "U1").payload == ListenPayload(listen=False)


def test_parse_status() -> None:
    command = parse_command("status", "U1")

    assert command.type is CommandType.STATUS
    assert command.payload == StatusPayload()


def test_parse_order_prefers_volume_over_motion() -> None:
    command = parse_command("motion wave volume 20", "U1")

    assert command.type is CommandType.VOLUME


def test_parse_unrecognised() -> None:
    with pytest.raises(CommandParseError):
        parse_command("dance please", "U1")


def test_interpret_returns_command_for_commands() -> None:
    result = interpret("volume 50", "U1")

    assert result.intent is Intent.COMMAND
    assert result.command is not None
    assert result.command.payload == VolumePayload(volume=50)


def test_interpret_chat_has_no_command() -> None:
    result = interpret("いい天気だね", "U1")

    assert result.intent is Intent.CHAT
    assert result.command is None


def test_interpret_unparsable_command() -> None:
    result = interpret("volume loud", "U1")

    assert result.intent is Intent.COMMAND
    assert result.command is None


@pytest.mark.parametrize(
    "text, dangerous",
    [
        ("volume 80", False),
        ("volume 81", True),
        ("brightness 80", False),
        ("brightness 81", True),
        ("motion wave", False),
        ("say hello", False),
    ],
)
def test_is_dangerous(text, dangerous) -> None:
    assert is_dangerous(parse_command(text, "U1")) is dangerous
