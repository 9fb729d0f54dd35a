"""Mapping from catalog identifiers to vector-index point ids.

Qdrant only accepts unsigned integers or UUIDs as point ids, so catalog ids
are folded through a 32-bit rolling hash. The mapping is one-way: every point
payload keeps ``externalId`` and hits are always resolved from the payload.
Two ids hashing to the same value overwrite each other's point; callers log
and monitor that case instead of preventing it.
"""

from __future__ import annotations

from typing import Iterable

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def _utf16_units(text: str) -> Iterable[int]:
    encoded = text.encode("utf-16-le", errors="surrogatepass")
    for index in range(0, len(encoded), 2):
        yield encoded[index] | (encoded[index + 1] << 8)


def rolling_hash32(text: str) -> int:
    """``h = h * 31 + unit`` over UTF-16 code units, wrapped to signed 32-bit."""

    value = 0
    for unit in _utf16_units(text):
        value = (value * 31 + unit) & _INT32_MASK
    if value & _INT32_SIGN:
        value -= 1 << 32
    return value


def to_native_id(external_id: str) -> int:
    """Positive, never-zero point id for ``external_id``."""

    return abs(rolling_hash32(external_id)) + 1


def find_collisions(external_ids: Iterable[str]) -> dict[int, list[str]]:
    """Native ids claimed by more than one distinct external id."""

    seen: dict[int, list[str]] = {}
    for external_id in external_ids:
        owners = seen.setdefault(to_native_id(external_id), [])
        if external_id not in owners:
            owners.append(external_id)
    return {native_id: owners for native_id, owners in seen.items() if len(owners) > 1}
