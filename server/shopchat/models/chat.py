from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from pydantic import BaseModel, Field, model_validator

from shopchat.models.catalog import CatalogEntry
from shopchat.models.search import SearchFilter


class ChatRequest(BaseModel):
    message: str = Field("", description="Customer message.")
    filters: SearchFilter | None = Field(None, description="Optional retrieval constraints.")
    imageBase64: str | None = Field(
        None, description="Optional product photo, raw base64 or a `data:` URI."
    )
    mimeType: str | None = Field(None, description="Image MIME type when not given in a data URI.")

    @model_validator(mode="after")
    def validate_message(self) -> "ChatRequest":
        self.message = self.message.strip()
        if not self.message and not self.imageBase64:
            raise ValueError("Either message or imageBase64 must be provided.")
        return self


class ChatError(BaseModel):
    type: str
    message: str


class ChatResponse(BaseModel):
    reply: str = Field(..., description="Assistant reply shown to the customer.")
    products: List[CatalogEntry] = Field(
        default_factory=list, description="Catalog entries the reply was grounded on."
    )
    imageDescription: str | None = Field(None, description="Model description of the uploaded image.")
    error: ChatError | None = None


@dataclass(frozen=True)
class ChatImage:
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass
class ChatResult:
    reply: str
    products: List[CatalogEntry] = field(default_factory=list)
    image_description: str | None = None
