from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Optional

_request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def set_request_id(request_id: Optional[str] = None) -> Token:
    value = request_id or str(uuid.uuid4())
    return _request_id_ctx_var.set(value)


def get_request_id() -> Optional[str]:
    return _request_id_ctx_var.get()


def reset_request_id(token: Token) -> None:
    _request_id_ctx_var.reset(token)


@dataclass(frozen=True)
class RequestContext:
    """Per-request values handed explicitly to services.

    The context var above only feeds the log formatter; services read the
    correlation id from this object so they stay callable outside a request.
    """

    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def new(cls, prefix: str | None = None) -> "RequestContext":
        value = str(uuid.uuid4())
        return cls(correlation_id=f"{prefix}_{value}" if prefix else value)

    def log_extra(self, **values: object) -> dict[str, object]:
        return {"correlationId": self.correlation_id, **values}
