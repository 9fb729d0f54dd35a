from __future__ import annotations

from shopchat.models.search import FieldCondition, FilterPredicate, MatchAny, Range, SearchFilter


def _contains(key: str, values: list[str]) -> FieldCondition:
    return FieldCondition(key=key, match=MatchAny(any=list(values)))


def compile_filter(search_filter: SearchFilter | None) -> FilterPredicate | None:
    """Translate a :class:`SearchFilter` into the index's payload predicate.

    Price, size, color and category narrow the result set (``must``). Style
    tags and materials widen it within the matching set (``should``), both
    against the shared ``tags`` payload field. Contradictory bounds are passed
    through untouched. Returns ``None`` when nothing constrains the search so
    callers never send an empty predicate.
    """

    if search_filter is None:
        return None

    must: list[FieldCondition] = []
    should: list[FieldCondition] = []

    if search_filter.priceMin is not None or search_filter.priceMax is not None:
        must.append(
            FieldCondition(
                key="price",
                range=Range(gte=search_filter.priceMin, lte=search_filter.priceMax),
            )
        )
    if search_filter.size:
        must.append(_contains("sizes", [search_filter.size]))
    if search_filter.color:
        must.append(_contains("colors", [search_filter.color]))
    if search_filter.category:
        must.append(_contains("tags", [search_filter.category]))
    if search_filter.styleTags:
        should.append(_contains("tags", search_filter.styleTags))
    if search_filter.materials:
        should.append(_contains("tags", search_filter.materials))

    if not must and not should:
        return None
    return FilterPredicate(must=must, should=should)
