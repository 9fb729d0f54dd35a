from __future__ import annotations

from typing import Any, List, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from shopchat.models.catalog import CatalogEntry, _normalise_labels


class SearchFilter(BaseModel):
    """User-facing retrieval constraints. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    priceMin: float | None = Field(None, validation_alias=AliasChoices("priceMin", "price_min"))
    priceMax: float | None = Field(None, validation_alias=AliasChoices("priceMax", "price_max"))
    size: str | None = None
    color: str | None = None
    category: str | None = None
    styleTags: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("styleTags", "style_tags")
    )
    materials: List[str] = Field(default_factory=list)

    @field_validator("size", "color", "category", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("styleTags", "materials", mode="before")
    @classmethod
    def _labels(cls, value: Any) -> list[str]:
        return _normalise_labels(value)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_defaults=True)


class Range(BaseModel):
    gte: float | None = None
    lte: float | None = None


class MatchAny(BaseModel):
    any: List[str]


class FieldCondition(BaseModel):
    key: str
    range: Range | None = None
    match: MatchAny | None = None


class FilterPredicate(BaseModel):
    """Payload predicate in the vector index's native (Qdrant) filter shape."""

    must: List[FieldCondition] = Field(default_factory=list)
    should: List[FieldCondition] = Field(default_factory=list)

    def to_native(self) -> dict[str, Any]:
        native: dict[str, Any] = {}
        if self.must:
            native["must"] = [condition.model_dump(exclude_none=True) for condition in self.must]
        if self.should:
            native["should"] = [condition.model_dump(exclude_none=True) for condition in self.should]
        return native


class IndexedVector(BaseModel):
    nativeId: int | str
    embedding: List[float]
    payload: dict[str, Any]


class IndexHit(BaseModel):
    """Raw hit as returned by a vector index backend."""

    nativeId: int | str
    score: float
    payload: dict[str, Any] = Field(default_factory=dict)


class RetrievalHit(BaseModel):
    entry: CatalogEntry
    score: float = Field(..., description="Similarity score; higher is more relevant")


class CollectionStatus(BaseModel):
    count: int = Field(0, ge=0, description="Number of indexed vectors")
    status: str = Field("init", description="Backend health status")


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Natural-language product query")
    filters: SearchFilter | None = None
    k: int | None = Field(None, ge=1, description="Number of hits to return")


class SearchResponse(BaseModel):
    query: str
    hits: List[RetrievalHit] = Field(default_factory=list)


class ResetResult(BaseModel):
    status: Literal["deleted"] = "deleted"
