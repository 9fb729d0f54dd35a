from __future__ import annotations

import base64
import binascii
import logging
import re

from fastapi import APIRouter, Depends

from shopchat.agents.chat_graph import ChatService
from shopchat.agents.prompts import APOLOGY_REPLY
from shopchat.api.deps import get_chat_service, get_request_context
from shopchat.core.context import RequestContext
from shopchat.core.exceptions import (
    CatalogValidationError,
    RetrievalError,
    UpstreamRequestError,
    UpstreamUnavailableError,
)
from shopchat.models.chat import ChatError, ChatImage, ChatRequest, ChatResponse

logger = logging.getLogger("shopchat.chat")

router = APIRouter(prefix="/chat", tags=["chat"])

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)
DEFAULT_IMAGE_MIME = "image/jpeg"


def decode_image(image_base64: str | None, mime_type: str | None) -> ChatImage | None:
    if not image_base64:
        return None
    data = image_base64.strip()
    match = _DATA_URI_RE.match(data)
    if match:
        mime_type = mime_type or match.group("mime")
        data = match.group("data")
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CatalogValidationError("imageBase64 is not valid base64.") from exc
    if not decoded:
        raise CatalogValidationError("imageBase64 is empty.")
    return ChatImage(data=decoded, mime_type=mime_type or DEFAULT_IMAGE_MIME)


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
    context: RequestContext = Depends(get_request_context),
) -> ChatResponse:
    image = decode_image(request.imageBase64, request.mimeType)
    try:
        result = await service.answer(request.message, request.filters, image, context)
    except (UpstreamUnavailableError, UpstreamRequestError, RetrievalError) as exc:
        logger.error("chat.degraded", extra=context.log_extra(errorType=exc.error_type, error=exc.message))
        return ChatResponse(
            reply=APOLOGY_REPLY,
            products=[],
            error=ChatError(type=exc.error_type, message=APOLOGY_REPLY),
        )
    return ChatResponse(
        reply=result.reply,
        products=result.products,
        imageDescription=result.image_description,
    )
