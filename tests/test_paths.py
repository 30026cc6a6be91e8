"""Tests for extraction paths."""

import pytest

from apirunner.templating import NOT_FOUND, extract, extract_or_none, split_path

RESPONSE = {
    "items": [{"id": "abc", "tags": ["x"]}, {"id": "def", "tags": ["y", "z"]}],
    "meta": {"total": 2, "length": "custom"},
    "count": 5,
}


def test_split_path_drops_response_prefix():
    assert split_path("response.items.0.id") == ["items", "0", "id"]
    assert split_path("items/0/id") == ["items", "0", "id"]


def test_index_path():
    assert extract({"items": [{"id": "abc"}]}, "response.items.0.id") == "abc"


def test_all_keyword_collects_a_field():
    assert extract(RESPONSE, "items.ALL.id") == ["abc", "def"]
    assert extract(RESPONSE, "items.all.id") == ["abc", "def"]


def test_all_without_field_returns_the_elements():
    assert extract(RESPONSE, "meta.ALL") == [2, "custom"]


def test_paths_without_random_keywords_are_deterministic():
    results = {repr(extract(RESPONSE, "items.1.tags.length")) for _ in range(20)}
    assert results == {"2"}


def test_indexes_are_clamped():
    assert extract(RESPONSE, "items.9.id") == "def"
    assert extract(RESPONSE, "items.-1.id") == "def"


def test_structural_keywords():
    assert extract(RESPONSE, "items.length") == 2
    assert extract(RESPONSE, "meta.keys") == ["total", "length"]
    assert extract(RESPONSE, "meta.values") == [2, "custom"]


def test_real_keys_win_over_keywords():
    assert extract(RESPONSE, "meta.length") == "custom"


def test_random_keywords_pick_members():
    for _ in range(10):
        assert extract(RESPONSE, "items.ANY.id") in ("abc", "def")
        assert extract(RESPONSE, "items.RANDOM_OBJECT") in RESPONSE["items"]


def test_any_n_samples_without_repetition():
    picked = extract(RESPONSE, "items.ANY_2")
    assert len(picked) == 2
    assert sorted(item["id"] for item in picked) == ["abc", "def"]
    assert len(extract(RESPONSE, "items.ANY_5")) == 2


def test_missing_key_is_not_found():
    assert extract(RESPONSE, "meta.missing") is NOT_FOUND
    assert extract_or_none(RESPONSE, "meta.missing") is None
    assert not NOT_FOUND


def test_iterating_a_scalar_is_not_found():
    assert extract(RESPONSE, "count.ALL") is NOT_FOUND


@pytest.mark.parametrize("path", ["", None])
def test_empty_path_returns_the_value(path):
    assert extract(RESPONSE, path) is RESPONSE


def test_string_values_are_returned_unchanged():
    assert extract("plain text", "items.0") == "plain text"
