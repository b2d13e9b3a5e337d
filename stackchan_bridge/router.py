"""Routes chat-platform events through interpretation, confirmation and dispatch."""

from __future__ import annotations

import logging
import re
from typing import Optional

from .adapters.llm import LanguageModelError
from .adapters.mqtt import BusTransportError
from .confirmation import (
    APPROVE_ACTION_ID,
    DENY_ACTION_ID,
    AuthorizationError,
    ConfirmationCoordinator,
    ConfirmationDecodeError,
    CoordinatorClosedError,
)
from .core import ChatSurface, CommandTimeoutError, LanguageModel
from .dispatcher import CommandDispatcher
from .interpreter import (
    USAGE_HINT,
    CommandParseError,
    classify,
    is_dangerous,
    parse_command,
)
from .models import (
    Acknowledgement,
    Command,
    CommandType,
    DeviceStateSnapshot,
    Intent,
    StatusPayload,
)

LOGGER = logging.getLogger(__name__)

DISPATCH_ERRORS = (BusTransportError, CommandTimeoutError)


class Messages:
    NOT_ALLOWED_SLASH = "ごめんね、このコマンドは許可されたユーザーだけが使えるの。チャットやステータス確認ならいつでもどうぞ！"
    NOT_ALLOWED_MESSAGE = "コマンドは許可ユーザーだけなんだ…でもチャットやステータスならいつでもOK！"
    NOT_ALLOWED_APPROVAL = "この操作は許可されていないみたい…チャットやステータス確認なら大歓迎だよ！"
    PARSE_FAILED_SLASH = "うまく読めなかったよ… `/stack say こんにちは` や `/stack volume 50` を試してみて！"
    PARSE_FAILED_MESSAGE = "コマンドっぽいけど内容が分からなかったよ。`/stack` で試してみてね！"
    INVALID_APPROVAL = "その確認はもう使えないみたい…もう一度コマンドを送ってね。"
    SENDING = "がんばって送信するね…！"
    SENDING_CONFIRMED = "コマンド送信するね…！"
    SENDING_RISKY_CONFIRMED = "ちょっと強めの操作、了解だよ！スタックチャンに送るね…！"
    SEND_FAILED = "うまく送れなかったみたい…もう一度試してみてね。"
    SEND_FAILED_CONFIRMED = "送信に失敗しちゃった…ごめんね。"
    CANCELLED = "わかった、キャンセルしたよ！"
    SHUTTING_DOWN = "いまお休み準備中なの…あとでもう一度お願いね！"
    STATE_REQUESTING = "最新のステータスをお願いしてくるね…ちょっと待ってて！"
    STATE_FAILED = "ステータスを取れなかった…もう一度お願いしてもいい？"
    STATE_EMPTY = "最新ステータスがまだないみたい…！"
    CHAT_FAILED = "ちょっと考えがまとまらなかった…もう一回お願い！"


def format_ack(ack: Acknowledgement) -> str:
    suffix = f" ({ack.message})" if ack.message else ""
    return f"Ack: {ack.status.value}{suffix}"


def _fmt(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_state(snapshot: Optional[DeviceStateSnapshot]) -> str:
    if snapshot is None:
        return Messages.STATE_EMPTY
    parts = []
    if snapshot.battery is not None:
        parts.append(f"バッテリー: {_fmt(snapshot.battery)}%")
    if snapshot.temperature is not None:
        parts.append(f"温度: {_fmt(snapshot.temperature)}°C")
    if snapshot.listening is not None:
        parts.append(f"リスニング: {'ON' if snapshot.listening else 'OFF'}")
    if snapshot.last_motion:
        parts.append(f"モーション: {snapshot.last_motion}")
    if snapshot.last_expression:
        parts.append(f"表情: {snapshot.last_expression}")
    if snapshot.brightness is not None:
        parts.append(f"明るさ: {_fmt(snapshot.brightness)}%")
    return " | ".join(parts) if parts else Messages.STATE_EMPTY


def strip_mention(text: str, bot_user_id: Optional[str]) -> str:
    if bot_user_id:
        text = re.sub(rf"<@{re.escape(bot_user_id)}>", "", text)
    return text.strip()


class ChatRouter:
    """Consumes text and action events from the chat platform."""

    def __init__(
        self,
        surface: ChatSurface,
        dispatcher: CommandDispatcher,
        coordinator: ConfirmationCoordinator,
        llm: Optional[LanguageModel] = None,
    ) -> None:
        self._surface = surface
        self._dispatcher = dispatcher
        self._coordinator = coordinator
        self._llm = llm

    async def handle_slash_command(self, user_id: str, text: str) -> None:
        if not self._coordinator.is_allowed(user_id):
            await self._surface.send_text(user_id, Messages.NOT_ALLOWED_SLASH)
            return

        text = text.strip()
        if not text:
            await self._surface.send_text(user_id, USAGE_HINT)
            return

        try:
            command = parse_command(text, user_id)
        except CommandParseError as exc:
            LOGGER.info("Rejected slash command from %s: %s", user_id, exc)
            await self._surface.send_text(user_id, f"{Messages.PARSE_FAILED_SLASH}\n{exc.hint}")
            return

        if is_dangerous(command):
            await self._propose(command)
            return

        await self._surface.send_text(user_id, Messages.SENDING)
        await self._dispatch_and_report(command, failure_text=Messages.SEND_FAILED)

    async def handle_message(
        self,
        user_id: str,
        text: str,
        *,
        channel_type: str = "im",
        bot_user_id: Optional[str] = None,
        subtype: Optional[str] = None,
    ) -> None:
        if subtype == "bot_message":
            return
        mentioned = bool(bot_user_id) and f"<@{bot_user_id}>" in text
        if channel_type != "im" and not mentioned:
            return

        cleaned = strip_mention(text, bot_user_id)
        intent = classify(cleaned)
        LOGGER.debug("Message from %s classified as %s", user_id, intent.value)

        if intent is Intent.QUERY:
            await self._answer_query(user_id)
        elif intent is Intent.COMMAND:
            await self._handle_command_message(user_id, cleaned)
        else:
            await self._chat(user_id, cleaned)

    async def handle_action(self, action_id: str, value: Optional[str], user_id: str) -> None:
        if action_id == APPROVE_ACTION_ID:
            await self._approve(value, user_id)
        elif action_id == DENY_ACTION_ID:
            self._coordinator.deny(user_id, value)
            await self._surface.send_text(user_id, Messages.CANCELLED)
        else:
            LOGGER.debug("Ignoring unknown action %s", action_id)

    async def _handle_command_message(self, user_id: str, text: str) -> None:
        try:
            command = parse_command(text, user_id)
        except CommandParseError as exc:
            LOGGER.info("Could not parse command message from %s: %s", user_id, exc)
            await self._surface.send_text(user_id, Messages.PARSE_FAILED_MESSAGE)
            return

        if not self._coordinator.is_allowed(user_id):
            await self._surface.send_text(user_id, Messages.NOT_ALLOWED_MESSAGE)
            return

        await self._propose(command)

    async def _propose(self, command: Command) -> None:
        try:
            prompt = self._coordinator.propose(command)
        except CoordinatorClosedError:
            await self._surface.send_text(command.requester_id, Messages.SHUTTING_DOWN)
            return
        await self._surface.send_prompt(command.requester_id, prompt.text, prompt.blocks)

    async def _approve(self, value: Optional[str], user_id: str) -> None:
        try:
            request = self._coordinator.authorize(value, user_id)
        except CoordinatorClosedError:
            await self._surface.send_text(user_id, Messages.SHUTTING_DOWN)
            return
        except ConfirmationDecodeError as exc:
            LOGGER.warning("Rejected malformed approval from %s: %s", user_id, exc)
            await self._surface.send_text(user_id, Messages.INVALID_APPROVAL)
            return
        except AuthorizationError:
            await self._surface.send_text(user_id, Messages.NOT_ALLOWED_APPROVAL)
            return

        await self._surface.send_text(
            user_id,
            Messages.SENDING_RISKY_CONFIRMED if request.risky else Messages.SENDING_CONFIRMED,
        )
        try:
            outcome = await self._coordinator.dispatch(request)
        except DISPATCH_ERRORS as exc:
            LOGGER.error("Confirmed %s command failed: %s", request.command.type.value, exc)
            await self._surface.send_text(user_id, Messages.SEND_FAILED_CONFIRMED)
            return
        await self._surface.send_text(user_id, format_ack(outcome.ack))

    async def _answer_query(self, user_id: str) -> None:
        snapshot = self._dispatcher.get_fresh_state()
        if snapshot is not None:
            await self._surface.send_text(user_id, format_state(snapshot))
            return

        await self._surface.send_text(user_id, Messages.STATE_REQUESTING)
        command = Command(type=CommandType.STATUS, payload=StatusPayload(), requester_id=user_id)
        try:
            ack = await self._dispatcher.send_command(command)
        except DISPATCH_ERRORS as exc:
            LOGGER.error("Status query failed: %s", exc)
            await self._surface.send_text(user_id, Messages.STATE_FAILED)
            return
        await self._surface.send_text(
            user_id, f"ステータスリクエストを送ったよ（{ack.status.value}）。更新を待ってるね！"
        )

    async def _chat(self, user_id: str, text: str) -> None:
        if self._llm is None:
            await self._surface.send_text(user_id, Messages.CHAT_FAILED)
            return
        try:
            reply = await self._llm.chat(user_id, text)
        except LanguageModelError as exc:
            LOGGER.error("Chat failed: %s", exc)
            await self._surface.send_text(user_id, Messages.CHAT_FAILED)
            return
        await self._surface.send_text(user_id, reply)

    async def _dispatch_and_report(self, command: Command, *, failure_text: str) -> None:
        try:
            ack = await self._dispatcher.send_command(command)
        except DISPATCH_ERRORS as exc:
            LOGGER.error("%s command failed: %s", command.type.value, exc)
            await self._surface.send_text(command.requester_id, failure_text)
            return
        await self._surface.send_text(command.requester_id, format_ack(ack))
