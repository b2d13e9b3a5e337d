"""Yes/no confirmation round-trip for commands awaiting approval.

A proposed command is encoded into the affirmative button of an
interactive prompt and comes back, possibly much later, as an action
event. Nothing is kept server side between the two: the encoded value
is the whole proposal. Because that value passes through a third party,
it is decoded strictly and the responder must be the original requester.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .dispatcher import CommandDispatcher
from .interpreter import is_dangerous
from .models import Acknowledgement, Command

LOGGER = logging.getLogger(__name__)

ENCODING_VERSION = 1
APPROVE_ACTION_ID = "run_command_yes"
DENY_ACTION_ID = "run_command_no"

# Slack caps button values at 2000 characters.
MAX_ENCODED_LENGTH = 2000


class ConfirmationState(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"


class ConfirmationDecodeError(ValueError):
    """Raised when an encoded confirmation value is malformed or forged."""


class AuthorizationError(RuntimeError):
    """Raised when a requester may not run, or approve, a command."""


class CoordinatorClosedError(RuntimeError):
    """Raised when proposals or approvals arrive after shutdown began."""


@dataclass(slots=True, frozen=True)
class ConfirmationRequest:
    command: Command

    @property
    def risky(self) -> bool:
        return is_dangerous(self.command)


@dataclass(slots=True, frozen=True)
class ConfirmationPrompt:
    text: str
    blocks: List[Dict[str, Any]]
    value: str
    risky: bool


@dataclass(slots=True, frozen=True)
class ConfirmationOutcome:
    state: ConfirmationState
    request: Optional[ConfirmationRequest] = None
    ack: Optional[Acknowledgement] = None


def encode_confirmation(command: Command) -> str:
    data = command.to_dict()
    data["v"] = ENCODING_VERSION
    data["risky"] = is_dangerous(command)
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def decode_confirmation(value: Optional[str]) -> ConfirmationRequest:
    """Rebuild the proposal carried by an approval action.

    Raises:
        ConfirmationDecodeError: If the value is not a well-formed proposal.
    """

    if not value or len(value) > MAX_ENCODED_LENGTH:
        raise ConfirmationDecodeError("Missing or oversized confirmation value")

    try:
        data = json.loads(value)
    except ValueError as exc:
        raise ConfirmationDecodeError("Confirmation value is not JSON") from exc

    if not isinstance(data, dict):
        raise ConfirmationDecodeError("Confirmation value must be an object")
    version = data.get("v")
    if type(version) is not int or version != ENCODING_VERSION:
        raise ConfirmationDecodeError(f"Unsupported confirmation version: {version!r}")

    try:
        command = Command.from_dict(data)
    except ValueError as exc:
        raise ConfirmationDecodeError(f"Invalid confirmation command: {exc}") from exc

    request = ConfirmationRequest(command=command)
    if data.get("risky") is not request.risky:
        LOGGER.warning(
            "Confirmation risk flag mismatch for %s command; using recomputed value",
            command.type.value,
        )
    return request


def _payload_block(command: Command) -> Dict[str, Any]:
    return {
        "type": "mrkdwn",
        "text": "```"
        + json.dumps(command.wire_payload(), ensure_ascii=False, indent=2)
        + "```",
    }


def build_prompt_blocks(command: Command, value: str, *, risky: bool) -> List[Dict[str, Any]]:
    if risky:
        heading = f"*ちょっと強めのコマンドだよ: {command.type.value}*\nほんとに実行していい？"
        yes_label, no_label = "Yes, do it", "Nope"
    else:
        heading = f"*{command.type.value}* を実行してもいい？"
        yes_label, no_label = "Yes", "No"

    return [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": heading},
            "fields": [
                {"type": "mrkdwn", "text": "ペイロード"},
                _payload_block(command),
            ],
        },
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": yes_label},
                    "style": "primary",
                    "action_id": APPROVE_ACTION_ID,
                    "value": value,
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": no_label},
                    "style": "danger",
                    "action_id": DENY_ACTION_ID,
                },
            ],
        },
    ]


class ConfirmationCoordinator:
    """Drives Proposed -> Approved/Denied for commands needing a yes/no answer.

    Unanswered proposals simply expire with the prompt that carries them;
    there is no server-side timer.
    """

    def __init__(
        self, dispatcher: CommandDispatcher, *, allowed_users: Iterable[str]
    ) -> None:
        self._dispatcher = dispatcher
        self._allowed_users = frozenset(allowed_users)
        self._closed = False

    def is_allowed(self, user_id: Optional[str]) -> bool:
        return bool(user_id) and user_id in self._allowed_users

    def propose(self, command: Command) -> ConfirmationPrompt:
        if self._closed:
            raise CoordinatorClosedError("Not accepting new proposals")

        risky = is_dangerous(command)
        value = encode_confirmation(command)
        text = (
            "少し強めの操作みたい。ほんとに実行していい？"
            if risky
            else "このコマンド、実行してもいい？"
        )
        LOGGER.info(
            "Proposed %s command for %s (risky=%s)",
            command.type.value,
            command.requester_id,
            risky,
        )
        return ConfirmationPrompt(
            text=text,
            blocks=build_prompt_blocks(command, value, risky=risky),
            value=value,
            risky=risky,
        )

    def authorize(self, value: Optional[str], responder_id: str) -> ConfirmationRequest:
        """Decode an approval and check the responder may run it.

        Raises:
            CoordinatorClosedError: If shutdown has begun.
            ConfirmationDecodeError: If the value is malformed.
            AuthorizationError: If the responder is not the original requester
                or is not allowed to issue commands.
        """

        if self._closed:
            raise CoordinatorClosedError("Not accepting approvals")

        request = decode_confirmation(value)
        requester_id = request.command.requester_id
        if responder_id != requester_id:
            LOGGER.warning(
                "Rejected approval of %s command: responder %s is not requester %s",
                request.command.type.value,
                responder_id,
                requester_id,
            )
            raise AuthorizationError("Approval must come from the original requester")
        if not self.is_allowed(requester_id):
            LOGGER.warning("Rejected approval from non-allowed user %s", responder_id)
            raise AuthorizationError("Requester is not allowed to issue commands")
        return request

    async def dispatch(self, request: ConfirmationRequest) -> ConfirmationOutcome:
        ack = await self._dispatcher.send_command(request.command)
        return ConfirmationOutcome(
            state=ConfirmationState.APPROVED, request=request, ack=ack
        )

    async def approve(self, value: Optional[str], responder_id: str) -> ConfirmationOutcome:
        request = self.authorize(value, responder_id)
        return await self.dispatch(request)

    def deny(self, responder_id: str, value: Optional[str] = None) -> ConfirmationOutcome:
        request: Optional[ConfirmationRequest] = None
        if value:
            try:
                request = decode_confirmation(value)
            except ConfirmationDecodeError:
                request = None
        LOGGER.info(
            "Confirmation denied by %s (%s)",
            responder_id,
            request.command.type.value if request else "unknown command",
        )
        return ConfirmationOutcome(state=ConfirmationState.DENIED, request=request)

    def close(self) -> None:
        self._closed = True
