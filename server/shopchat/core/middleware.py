from __future__ import annotations

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shopchat.core.context import get_request_id, reset_request_id, set_request_id

logger = logging.getLogger("shopchat.request")

CORRELATION_HEADERS = ("x-correlation-id", "x-request-id")
MAX_CORRELATION_ID_LENGTH = 128


def incoming_correlation_id(request: Request) -> str | None:
    for header in CORRELATION_HEADERS:
        value = (request.headers.get(header) or "").strip()
        if value and len(value) < MAX_CORRELATION_ID_LENGTH:
            return value
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id to the request, logs timing and echoes the id back."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        token = set_request_id(incoming_correlation_id(request))
        correlation_id = get_request_id() or ""

        started = time.perf_counter()
        extra: dict[str, object] = {"path": request.url.path, "method": request.method}
        logger.info("request.start", extra=extra)

        try:
            response = await call_next(request)
        except Exception:
            extra["durationMs"] = round((time.perf_counter() - started) * 1000, 2)
            logger.exception("request.failed", extra=extra)
            raise
        finally:
            reset_request_id(token)

        extra.update({"status": response.status_code, "durationMs": round((time.perf_counter() - started) * 1000, 2)})
        logger.info("request.end", extra=extra)
        response.headers["X-Request-ID"] = correlation_id
        response.headers["X-Correlation-ID"] = correlation_id
        return response
