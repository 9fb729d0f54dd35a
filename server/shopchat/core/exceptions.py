from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shopchat.core.context import get_request_id


class AppError(Exception):
    status_code: int = 500
    error_type: str = "APP_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.error_type, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class CatalogValidationError(AppError):
    status_code = 422
    error_type = "VALIDATION_ERROR"


class DuplicateEntryError(AppError):
    status_code = 409
    error_type = "DUPLICATE_ENTRY"


class EntryNotFoundError(AppError):
    status_code = 404
    error_type = "NOT_FOUND"


class UpstreamUnavailableError(AppError):
    """A backend stayed unreachable (network, timeout, 5xx) after retries."""

    status_code = 503
    error_type = "UPSTREAM_UNAVAILABLE"


class EmbeddingUnavailableError(UpstreamUnavailableError):
    error_type = "EMBEDDING_UNAVAILABLE"


class VectorIndexUnavailableError(UpstreamUnavailableError):
    error_type = "VECTOR_INDEX_UNAVAILABLE"


class ChatModelUnavailableError(UpstreamUnavailableError):
    error_type = "CHAT_MODEL_UNAVAILABLE"


class UpstreamRequestError(AppError):
    """A backend rejected the request outright; retrying would not help."""

    status_code = 502
    error_type = "UPSTREAM_REQUEST_ERROR"


class RetrievalError(AppError):
    status_code = 503
    error_type = "RETRIEVAL_ERROR"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        payload = {"error": exc.to_dict()}
        trace_id = get_request_id()
        if trace_id:
            payload["error"]["traceId"] = trace_id

        return JSONResponse(status_code=exc.status_code, content=payload)
