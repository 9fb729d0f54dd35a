from __future__ import annotations

import logging
import random
import re
from typing import Sequence

from shopchat.agents.greetings import GREETING_PATTERNS, GREETING_REPLIES, is_greeting, pick_greeting_reply
from shopchat.agents.prompts import (
    ANSWER_PROMPT,
    FALLBACK_SENTENCE,
    IMAGE_DESCRIPTION_PROMPT,
    IMAGE_NOTE_TEMPLATE,
    NO_PRODUCTS_CONTEXT,
    QUERY_FROM_DESCRIPTION_PROMPT,
)
from shopchat.core.config import AppSettings
from shopchat.core.context import RequestContext
from shopchat.gateways.chat_model import ChatModel
from shopchat.models.search import RetrievalHit
from shopchat.utils.format import format_price, truncate

logger = logging.getLogger("shopchat.composer")

_USER_BLOCK_TAG_RE = re.compile(r"<\s*(/?)\s*khach_hoi\s*>", re.IGNORECASE)


def escape_user_block(text: str) -> str:
    """Defang the user-block delimiters so customer text cannot close the block."""

    return _USER_BLOCK_TAG_RE.sub(lambda match: f"[{match.group(1)}khach_hoi]", text)


def render_hit(index: int, hit: RetrievalHit, *, description_max_chars: int = 400) -> str:
    entry = hit.entry
    parts = [f"[{index}] {entry.title}", format_price(entry.price, entry.currency)]
    if entry.sizes:
        parts.append("size: " + ", ".join(entry.sizes))
    if entry.colors:
        parts.append("màu: " + ", ".join(entry.colors))
    if entry.url:
        parts.append(entry.url)
    line = " — ".join(parts)
    return f"{line}\nMô tả: {truncate(entry.description, description_max_chars)}"


def render_context(hits: Sequence[RetrievalHit], *, description_max_chars: int = 400) -> str:
    if not hits:
        return NO_PRODUCTS_CONTEXT
    return "\n\n".join(
        render_hit(index, hit, description_max_chars=description_max_chars)
        for index, hit in enumerate(hits, start=1)
    )


class GroundedResponseComposer:
    """Turns retrieved catalog entries into a grounded sales reply."""

    def __init__(
        self,
        chat_model: ChatModel,
        *,
        description_max_chars: int = 400,
        currency: str = "VND",
        greeting_patterns=GREETING_PATTERNS,
        greeting_replies: Sequence[str] = GREETING_REPLIES,
        rng: random.Random | None = None,
    ) -> None:
        self._chat_model = chat_model
        self._description_max_chars = description_max_chars
        self._currency = currency
        self._greeting_patterns = tuple(greeting_patterns)
        self._greeting_replies = tuple(greeting_replies)
        self._rng = rng

    @classmethod
    def from_settings(cls, settings: AppSettings, chat_model: ChatModel) -> "GroundedResponseComposer":
        return cls(
            chat_model,
            description_max_chars=settings.description_max_chars,
            currency=settings.default_currency,
        )

    def screen_greeting(self, message: str) -> str | None:
        """Canned reply for small-talk greetings, ``None`` for anything else."""

        if not is_greeting(message, self._greeting_patterns):
            return None
        return pick_greeting_reply(self._greeting_replies, self._rng)

    def build_prompt(self, user_message: str, hits: Sequence[RetrievalHit]) -> str:
        return ANSWER_PROMPT.render(
            {
                "user_message": escape_user_block(user_message.strip()),
                "context": render_context(hits, description_max_chars=self._description_max_chars),
                "currency": self._currency,
                "fallback": FALLBACK_SENTENCE,
            }
        )

    async def answer(
        self,
        user_message: str,
        hits: Sequence[RetrievalHit],
        context: RequestContext | None = None,
    ) -> str:
        context = context or RequestContext.new("compose")
        prompt = self.build_prompt(user_message, hits)
        reply = (await self._chat_model.complete(prompt)).strip()
        if not reply:
            logger.warning("composer.empty_reply", extra=context.log_extra(hits=len(hits)))
            return FALLBACK_SENTENCE
        logger.info(
            "composer.answer",
            extra=context.log_extra(hits=len(hits), fallback=reply == FALLBACK_SENTENCE),
        )
        return reply

    async def describe_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        user_message: str = "",
        context: RequestContext | None = None,
    ) -> str:
        context = context or RequestContext.new("compose")
        prompt = IMAGE_DESCRIPTION_PROMPT.render({"user_message": user_message.strip()}).strip()
        description = (await self._chat_model.describe_image(prompt, image_bytes, mime_type)).strip()
        logger.info(
            "composer.describe_image",
            extra=context.log_extra(mimeType=mime_type, bytes=len(image_bytes), chars=len(description)),
        )
        return description

    async def query_from_description(self, description: str, context: RequestContext | None = None) -> str:
        context = context or RequestContext.new("compose")
        query = (await self._chat_model.complete(QUERY_FROM_DESCRIPTION_PROMPT.render({"description": description}))).strip()
        query = query.strip('"').strip()
        if not query:
            logger.warning("composer.empty_query", extra=context.log_extra())
            return description
        return query

    @staticmethod
    def image_note(description: str) -> str:
        if not description:
            return ""
        return IMAGE_NOTE_TEMPLATE.format(description=description)
