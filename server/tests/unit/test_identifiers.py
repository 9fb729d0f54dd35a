from __future__ import annotations

import random
import string

from shopchat.services.identifiers import find_collisions, rolling_hash32, to_native_id


def test_known_hash_vectors() -> None:
    assert to_native_id("a") == 98
    assert to_native_id("ab") == 3106
    assert to_native_id("d001") == 3026766
    assert to_native_id("hello") == 99162323


def test_minimum_int_hash_stays_positive() -> None:
    assert rolling_hash32("polygenelubricants") == -(2**31)
    assert to_native_id("polygenelubricants") == 2**31 + 1


def test_empty_string_maps_to_one() -> None:
    assert to_native_id("") == 1


def test_mapping_is_deterministic_and_positive() -> None:
    for external_id in ["SKU-001", "Áo sơ mi trắng", "😀-emoji", "x" * 500]:
        first = to_native_id(external_id)
        assert first == to_native_id(external_id)
        assert first >= 1


def test_non_bmp_characters_hash_as_surrogate_pairs() -> None:
    # U+1F600 is the pair D83D DE00.
    expected = ((0xD83D * 31) + 0xDE00) & 0xFFFFFFFF
    assert rolling_hash32("😀") == expected


def test_collisions_are_rare_for_random_ids() -> None:
    rng = random.Random(20240601)
    alphabet = string.ascii_letters + string.digits + "-_"
    ids = {"".join(rng.choice(alphabet) for _ in range(12)) for _ in range(10_000)}

    collisions = find_collisions(ids)

    assert len(collisions) <= 2


def test_find_collisions_reports_known_pair() -> None:
    # "Aa" and "BB" share the same 31-based hash.
    assert find_collisions(["Aa", "BB", "Aa", "c"]) == {to_native_id("Aa"): ["Aa", "BB"]}
