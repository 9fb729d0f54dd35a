"""Optional Langfuse tracing for the chat graph and chat-model calls.

Tracing switches on only when both Langfuse keys are configured; the SDK is
an optional extra (``pip install .[tracing]``).
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Tuple

from shopchat.core.config import AppSettings

try:  # pragma: no cover - optional dependency
    from langfuse import Langfuse
    from langfuse.langchain import CallbackHandler as LangfuseCallbackHandler
except ImportError:  # pragma: no cover - optional dependency
    Langfuse = None  # type: ignore[assignment]
    LangfuseCallbackHandler = None  # type: ignore[assignment]

logger = logging.getLogger("shopchat.tracing")

LangchainCallbacks = Tuple[Any, ...]


class LangfuseNotInstalled(RuntimeError):
    """Tracing keys are configured but the Langfuse SDK is missing."""


def tracing_enabled(settings: AppSettings) -> bool:
    return bool(settings.langfuse_public_key and settings.langfuse_secret_key)


@lru_cache(maxsize=4)
def _handler_for(public_key: str, secret_key: str, host: str | None, release: str | None) -> Any:
    if Langfuse is None or LangfuseCallbackHandler is None:  # pragma: no cover
        raise LangfuseNotInstalled("Langfuse is not installed. Install the `tracing` extra to enable tracing.")

    for name, value in (
        ("LANGFUSE_PUBLIC_KEY", public_key),
        ("LANGFUSE_SECRET_KEY", secret_key),
        ("LANGFUSE_HOST", host),
        ("LANGFUSE_RELEASE", release),
    ):
        if value:
            os.environ.setdefault(name, value)

    Langfuse(public_key=public_key, secret_key=secret_key, host=host, release=release)
    logger.info("tracing.enabled", extra={"host": host or "default", "release": release})
    return LangfuseCallbackHandler(public_key=public_key)


def get_langchain_callbacks(settings: AppSettings) -> LangchainCallbacks:
    if not tracing_enabled(settings):
        return tuple()
    return (
        _handler_for(
            settings.langfuse_public_key,
            settings.langfuse_secret_key,
            settings.langfuse_host,
            settings.langfuse_release,
        ),
    )
