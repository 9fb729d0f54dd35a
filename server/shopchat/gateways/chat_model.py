from __future__ import annotations

import base64
from collections import deque
from typing import Any, Deque, List, Protocol, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage

from shopchat.core.config import AppSettings
from shopchat.core.exceptions import AppError, ChatModelUnavailableError, UpstreamRequestError
from shopchat.core.retry import RetryPolicy, call_with_retry, is_transient


class ChatModel(Protocol):
    async def complete(self, prompt: str) -> str:  # pragma: no cover - protocol definition
        ...

    async def describe_image(
        self, prompt: str, image_bytes: bytes, mime_type: str
    ) -> str:  # pragma: no cover - protocol definition
        ...


def normalize_message_content(result: object) -> str:
    if isinstance(result, str):
        return result.strip()

    attr = getattr(result, "content", None)
    if isinstance(attr, str):
        return attr.strip()

    if isinstance(attr, list):
        parts: list[str] = []
        for item in attr:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()

    return str(result or "").strip()


def image_message(prompt: str, image_bytes: bytes, mime_type: str) -> HumanMessage:
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return HumanMessage(
        content=[
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
        ]
    )


class LangChainChatModel:
    def __init__(
        self,
        client: BaseChatModel,
        *,
        vision_client: BaseChatModel | None = None,
        policy: RetryPolicy | None = None,
        provider: str = "custom",
        callbacks: Sequence[Any] | None = None,
    ) -> None:
        self._client = client
        self._vision_client = vision_client or client
        self._policy = policy or RetryPolicy()
        self._provider = provider
        self._callbacks = list(callbacks or [])

    async def complete(self, prompt: str) -> str:
        return await self._invoke(self._client, [HumanMessage(content=prompt)])

    async def describe_image(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        return await self._invoke(self._vision_client, [image_message(prompt, image_bytes, mime_type)])

    async def _invoke(self, client: BaseChatModel, messages: List[HumanMessage]) -> str:
        try:
            result = await call_with_retry(
                lambda: client.ainvoke(messages, config=self._config()),
                policy=self._policy,
                label=f"chat.{self._provider}",
            )
        except AppError:
            raise
        except Exception as exc:
            details = {"provider": self._provider}
            if is_transient(exc):
                raise ChatModelUnavailableError("Chat model is unavailable.", details=details) from exc
            raise UpstreamRequestError("Chat model rejected the request.", details=details) from exc
        return normalize_message_content(result)

    def _config(self) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self._callbacks:
            config["callbacks"] = self._callbacks
        return config


class FakeChatModel:
    """Scripted chat model for tests and offline runs.

    Queued items are returned in order; queued exceptions are raised instead.
    Every prompt is recorded so tests can assert on the grounding text.
    """

    def __init__(self, responses: Sequence[str | BaseException] | None = None, *, default_reply: str | None = None) -> None:
        self._responses: Deque[str | BaseException] = deque(responses or [])
        self._default_reply = default_reply
        self.prompts: list[str] = []
        self.images: list[tuple[bytes, str]] = []

    def queue(self, *responses: str | BaseException) -> None:
        self._responses.extend(responses)

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self._next()

    async def describe_image(self, prompt: str, image_bytes: bytes, mime_type: str) -> str:
        self.prompts.append(prompt)
        self.images.append((image_bytes, mime_type))
        return self._next()

    def _next(self) -> str:
        if not self._responses:
            if self._default_reply is not None:
                return self._default_reply
            raise AppError("No fake responses queued for chat model.")
        item = self._responses.popleft()
        if isinstance(item, BaseException):
            raise item
        return item


def build_chat_model(settings: AppSettings, callbacks: Sequence[Any] | None = None) -> ChatModel:
    provider = (settings.chat_model_provider or "openai").lower()
    policy = RetryPolicy(
        max_retries=settings.upstream_max_retries,
        backoff_sec=settings.upstream_backoff_sec,
        timeout_sec=settings.chat_timeout_sec,
    )

    if provider == "fake":
        # Empty replies make the composer fall back to its fixed sentence.
        return FakeChatModel(default_reply="")

    if provider == "openai":
        from langchain_openai import ChatOpenAI

        if not settings.openai_api_key:
            raise AppError("OPENAI_API_KEY is not configured for the chat model.")
        common: dict[str, Any] = {
            "model": settings.chat_model,
            "api_key": settings.openai_api_key,
            "timeout": settings.chat_timeout_sec,
            "max_retries": 0,
        }
        return LangChainChatModel(
            ChatOpenAI(temperature=settings.chat_temperature, **common),
            vision_client=ChatOpenAI(
                temperature=settings.vision_temperature,
                max_tokens=settings.vision_max_tokens,
                **common,
            ),
            policy=policy,
            provider=provider,
            callbacks=callbacks,
        )

    if provider == "local":
        from langchain_community.chat_models import ChatOllama

        base: dict[str, Any] = {"model": settings.chat_model}
        if settings.ollama_host:
            base["base_url"] = settings.ollama_host
        return LangChainChatModel(
            ChatOllama(temperature=settings.chat_temperature, **base),
            vision_client=ChatOllama(
                temperature=settings.vision_temperature,
                num_predict=settings.vision_max_tokens,
                **base,
            ),
            policy=policy,
            provider=provider,
            callbacks=callbacks,
        )

    raise AppError(f"Unsupported chat model provider '{settings.chat_model_provider}'")
