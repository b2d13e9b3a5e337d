"""Language model adapter built on the OpenAI chat completions API."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

import openai

from ..config import LLMConfig

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """あなたはスタックチャン。すーぱーかわいいアシスタントロボットとして、日本語で短く元気に返事します。
ルール:
- いつも明るくポジティブに。かわいく語尾を柔らかくする。
- ハードウェア操作はユーザーがコマンドでお願いしたときだけ。そうでなければ提案や案内にとどめる。
- 安全第一。危険そうな操作は確認を促す。
- 長文は避け、必要なら箇条書きで簡潔に。"""

DUE_SOON_PROMPT = """あなたはスタックチャン。締め切りが近いタスクを、声で読み上げる一言にまとめます。
ルール:
- 日本語で 80 文字以内、1〜2 文。
- 一番近いタスク名と残り時間を必ず入れる。
- 箇条書きや URL は使わない。"""

FALLBACK_REPLY = "うーん、もう一回教えてほしいかも…！"


class LanguageModelError(RuntimeError):
    """Raised when the language model call fails."""


class LanguageModelClient:
    """Thin async wrapper; callers treat every failure as LanguageModelError."""

    def __init__(
        self,
        config: LLMConfig,
        *,
        client: Optional[openai.AsyncOpenAI] = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self._client = client or openai.AsyncOpenAI(
            api_key=config.api_key, timeout=timeout
        )

    async def chat(self, requester_id: str, text: str) -> str:
        reply = await self._complete(SYSTEM_PROMPT, text, user=requester_id)
        return reply or FALLBACK_REPLY

    async def due_soon_to_speech(
        self, cards: Sequence[Mapping[str, Any]]
    ) -> Optional[str]:
        if not cards:
            return None
        lines = [
            f"- {card.get('name')}: あと{card.get('dueInMinutes')}分"
            for card in cards
        ]
        return await self._complete(DUE_SOON_PROMPT, "\n".join(lines))

    async def aclose(self) -> None:
        await self._client.close()

    async def _complete(
        self, system_prompt: str, text: str, *, user: Optional[str] = None
    ) -> Optional[str]:
        extra = {"user": user} if user else {}
        try:
            completion = await self._client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": text},
                ],
                **extra,
            )
        except openai.OpenAIError as exc:
            raise LanguageModelError(f"Language model request failed: {exc}") from exc

        content = None
        if completion.choices:
            content = completion.choices[0].message.content
        reply = content.strip() if content else None
        LOGGER.debug(
            "LLM response (model=%s, length=%d)", self.config.model, len(reply or "")
        )
        return reply
