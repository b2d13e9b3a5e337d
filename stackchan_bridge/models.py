"""Domain models for device commands, acknowledgements and state."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union


class CommandType(str, Enum):
    SAY = "say"
    VOLUME = "volume"
    MOTION = "motion"
    EXPRESSION = "expression"
    LISTEN = "listen"
    BRIGHTNESS = "brightness"
    STATUS = "status"


class Intent(str, Enum):
    CHAT = "CHAT"
    QUERY = "QUERY"
    COMMAND = "COMMAND"


class AckStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class SayPayload:
    text: str


@dataclass(slots=True, frozen=True)
class VolumePayload:
    volume: int


@dataclass(slots=True, frozen=True)
class MotionPayload:
    motion: str


@dataclass(slots=True, frozen=True)
class ExpressionPayload:
    expression: str


@dataclass(slots=True, frozen=True)
class ListenPayload:
    listen: bool


@dataclass(slots=True, frozen=True)
class BrightnessPayload:
    brightness: int


@dataclass(slots=True, frozen=True)
class StatusPayload:
    pass


CommandPayload = Union[
    SayPayload,
    VolumePayload,
    MotionPayload,
    ExpressionPayload,
    ListenPayload,
    BrightnessPayload,
    StatusPayload,
]

PAYLOAD_TYPES: Dict[CommandType, type] = {
    CommandType.SAY: SayPayload,
    CommandType.VOLUME: VolumePayload,
    CommandType.MOTION: MotionPayload,
    CommandType.EXPRESSION: ExpressionPayload,
    CommandType.LISTEN: ListenPayload,
    CommandType.BRIGHTNESS: BrightnessPayload,
    CommandType.STATUS: StatusPayload,
}


def payload_to_dict(payload: CommandPayload) -> Dict[str, Any]:
    if isinstance(payload, SayPayload):
        return {"text": payload.text}
    if isinstance(payload, VolumePayload):
        return {"volume": payload.volume}
    if isinstance(payload, MotionPayload):
        return {"motion": payload.motion}
    if isinstance(payload, ExpressionPayload):
        return {"expression": payload.expression}
    if isinstance(payload, ListenPayload):
        return {"listen": payload.listen}
    if isinstance(payload, BrightnessPayload):
        return {"brightness": payload.brightness}
    if isinstance(payload, StatusPayload):
        return {}
    raise TypeError(f"Unsupported payload: {payload!r}")


def _is_level(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 100


def payload_from_dict(command_type: CommandType, data: Mapping[str, Any]) -> CommandPayload:
    """Rebuild a typed payload from its wire form.

    Raises:
        ValueError: If the mapping does not describe a valid payload for the type.
    """

    if command_type is CommandType.SAY:
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("say payload requires non-empty text")
        return SayPayload(text=text)
    if command_type is CommandType.VOLUME:
        volume = data.get("volume")
        if not _is_level(volume):
            raise ValueError("volume payload requires an integer between 0 and 100")
        return VolumePayload(volume=volume)
    if command_type is CommandType.MOTION:
        motion = data.get("motion")
        if not isinstance(motion, str) or not motion:
            raise ValueError("motion payload requires a token")
        return MotionPayload(motion=motion)
    if command_type is CommandType.EXPRESSION:
        expression = data.get("expression")
        if not isinstance(expression, str) or not expression:
            raise ValueError("expression payload requires a token")
        return ExpressionPayload(expression=expression)
    if command_type is CommandType.LISTEN:
        listen = data.get("listen")
        if not isinstance(listen, bool):
            raise ValueError("listen payload requires a boolean")
        return ListenPayload(listen=listen)
    if command_type is CommandType.BRIGHTNESS:
        brightness = data.get("brightness")
        if not _is_level(brightness):
            raise ValueError("brightness payload requires an integer between 0 and 100")
        return BrightnessPayload(brightness=brightness)
    if command_type is CommandType.STATUS:
        return StatusPayload()
    raise ValueError(f"Unsupported command type: {command_type!r}")


@dataclass(slots=True, frozen=True)
class Command:
    """A typed device command; the payload class is fixed by ``type``."""

    type: CommandType
    payload: CommandPayload
    requester_id: str
    original_text: Optional[str] = None

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.type]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{self.type.value} command requires {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )

    def wire_payload(self) -> Dict[str, Any]:
        return payload_to_dict(self.payload)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.wire_payload(),
            "requesterId": self.requester_id,
            "originalText": self.original_text,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Command":
        """Rebuild a command from :meth:`to_dict` output.

        Raises:
            ValueError: If any field is missing or malformed.
        """

        try:
            command_type = CommandType(data.get("type"))
        except ValueError as exc:
            raise ValueError(f"Unknown command type: {data.get('type')!r}") from exc

        payload = data.get("payload")
        if not isinstance(payload, Mapping):
            raise ValueError("Command payload must be an object")

        requester_id = data.get("requesterId")
        if not isinstance(requester_id, str) or not requester_id:
            raise ValueError("Command requesterId is required")

        original_text = data.get("originalText")
        if original_text is not None and not isinstance(original_text, str):
            raise ValueError("Command originalText must be a string")

        return cls(
            type=command_type,
            payload=payload_from_dict(command_type, payload),
            requester_id=requester_id,
            original_text=original_text,
        )


@dataclass(slots=True, frozen=True)
class Acknowledgement:
    id: str
    status: AckStatus
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is AckStatus.OK

    @classmethod
    def from_json(cls, payload: Union[bytes, str]) -> "Acknowledgement":
        """Parse an acknowledgement message.

        Raises:
            ValueError: If the payload is not a valid acknowledgement.
        """

        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("Acknowledgement must be a JSON object")

        ack_id = data.get("id")
        if not isinstance(ack_id, str) or not ack_id:
            raise ValueError("Acknowledgement id is required")

        try:
            status = AckStatus(data.get("status"))
        except ValueError as exc:
            raise ValueError(f"Invalid acknowledgement status: {data.get('status')!r}") from exc

        message = data.get("message")
        return cls(
            id=ack_id,
            status=status,
            message=str(message) if message is not None else None,
        )


@dataclass(slots=True, frozen=True)
class DeviceStateSnapshot:
    captured_at: float
    battery: Optional[float] = None
    temperature: Optional[float] = None
    listening: Optional[bool] = None
    last_motion: Optional[str] = None
    last_expression: Optional[str] = None
    brightness: Optional[float] = None
    reported_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(
        cls, payload: Union[bytes, str], *, captured_at: float
    ) -> "DeviceStateSnapshot":
        """Parse a state message, stamping it with the local capture time.

        Raises:
            ValueError: If the payload is not a JSON object.
        """

        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("State message must be a JSON object")

        known = {
            "battery",
            "temperature",
            "listening",
            "lastMotion",
            "lastExpression",
            "brightness",
            "updatedAt",
        }
        return cls(
            captured_at=captured_at,
            battery=_number(data.get("battery")),
            temperature=_number(data.get("temperature")),
            listening=data["listening"] if isinstance(data.get("listening"), bool) else None,
            last_motion=_text(data.get("lastMotion")),
            last_expression=_text(data.get("lastExpression")),
            brightness=_number(data.get("brightness")),
            reported_at=_text(data.get("updatedAt")),
            extra={key: value for key, value in data.items() if key not in known},
        )


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)
