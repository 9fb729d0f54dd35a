from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalise_labels(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    labels: list[str] = []
    for item in value:
        text = str(item).strip()
        if text and text not in labels:
            labels.append(text)
    return labels


class CatalogEntry(BaseModel):
    """Canonical product record shared by the catalog store and the vector index."""

    model_config = ConfigDict(extra="ignore")

    externalId: str = Field(..., min_length=1, description="Catalog owner's stable identifier")
    title: str = Field(..., min_length=1, description="Product title")
    description: str = Field(..., min_length=1, description="Product description")
    price: float = Field(..., ge=0, description="Unit price in `currency`")
    currency: str = Field("VND", min_length=1, description="ISO currency code")
    sizes: List[str] = Field(default_factory=list, description="Available sizes")
    colors: List[str] = Field(default_factory=list, description="Available colors")
    stock: int = Field(0, ge=0, description="Units in stock")
    url: str | None = Field(None, description="Product page URL")
    tags: List[str] = Field(default_factory=list, description="Category, style and material tags")

    @field_validator("externalId", "title", "description", "currency", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("sizes", "colors", "tags", mode="before")
    @classmethod
    def _labels(cls, value: Any) -> list[str]:
        return _normalise_labels(value)

    @field_validator("url", mode="before")
    @classmethod
    def _blank_url(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def searchable(self) -> str:
        return f"{self.title}\n{self.description}"

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump()
        payload["searchable"] = self.searchable
        return payload


class CatalogEntryUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, min_length=1)
    description: str | None = Field(None, min_length=1)
    price: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=1)
    sizes: List[str] | None = None
    colors: List[str] | None = None
    stock: int | None = Field(None, ge=0)
    url: str | None = None
    tags: List[str] | None = None

    @field_validator("sizes", "colors", "tags", mode="before")
    @classmethod
    def _labels(cls, value: Any) -> list[str] | None:
        return None if value is None else _normalise_labels(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class IngestRequest(BaseModel):
    items: List[CatalogEntry] = Field(..., min_length=1, description="Entries to add to the catalog")


class IngestResult(BaseModel):
    indexed: int = Field(..., ge=0, description="Number of entries written to the vector index")


class Paging(BaseModel):
    page: int
    pageSize: int
    total: int
    totalPages: int


class CatalogPage(BaseModel):
    items: List[CatalogEntry] = Field(default_factory=list)
    paging: Paging
