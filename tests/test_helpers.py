from __future__ import annotations

import pytest

from errors import MalformedResponse
from helpers import (
    analysis_to_update, parse_ai_response, repair_broken_json, sanitize_currency, strip_code_fences,
)


def test_code_fences_are_stripped() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'


def test_parse_plain_object_fills_defaults() -> None:
    parsed = parse_ai_response('{"artist": "Can", "title": "Tago Mago", "year": 1971}')

    assert parsed["artist"] == "Can"
    assert parsed["year"] == "1971"
    assert parsed["genre"] == "Unknown"
    assert parsed["condition"] == "Good"
    assert parsed["label"] == "Unknown"
    assert parsed["notes"] == "Analyzed by AI"
    assert parsed["average_cost"] == "€20-35 (Est)"


def test_parse_extracts_object_from_surrounding_text() -> None:
    text = 'Here you go:\n```json\n{"artist": "Can", "tracks": ["Paperhouse", "Mushroom"]}\n```\nEnjoy!'

    parsed = parse_ai_response(text)

    assert parsed["tracks"] == "Paperhouse\nMushroom"


def test_lists_are_joined() -> None:
    parsed = parse_ai_response('{"group_members": ["Holger Czukay", "Irmin Schmidt"]}')

    assert parsed["group_members"] == "Holger Czukay, Irmin Schmidt"


def test_truncated_json_is_repaired() -> None:
    parsed = parse_ai_response('{"artist": "Can", "tracks": ["Paperhouse", "Mushro')

    assert parsed["artist"] == "Can"
    assert parsed["tracks"] == "Paperhouse\nMushro"


def test_raw_newlines_inside_strings_are_escaped() -> None:
    parsed = parse_ai_response('{"artist": "Can", "notes": "Line one\nLine two"}')

    assert parsed["notes"] == "Line one\nLine two"


def test_repair_closes_nested_structures() -> None:
    assert repair_broken_json('{"a": [1, {"b": "x') == '{"a": [1, {"b": "x"]}}'


@pytest.mark.parametrize("text", ["", "   ", "no json at all", "[1, 2, 3]"])
def test_unusable_replies_raise(text) -> None:
    with pytest.raises(MalformedResponse):
        parse_ai_response(text)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, "€20-35 (Est)"),
        ("", "€20-35 (Est)"),
        ("Varies", "€20-35 (Analyst Est)"),
        ("unknown", "€20-35 (Analyst Est)"),
        ("$40-60", "€40-60"),
        ("40-60 USD", "€40-60"),
        ("25-30", "€25-30"),
        ("EUR 30-45", "€ 30-45"),
        ("€150-200", "€150-200"),
        ("$", "€20-35 (Est)"),
    ],
)
def test_sanitize_currency(raw, expected) -> None:
    assert sanitize_currency(raw) == expected


def test_analysis_to_update_truncates_limited_fields() -> None:
    analysis = parse_ai_response('{"artist": "Can", "label": "%s", "catalog_number": "%s"}' % ("L" * 150, "C" * 80))

    update = analysis_to_update(analysis)

    assert len(update["label"]) == 100
    assert len(update["catalog_number"]) == 50
    assert update["artist"] == "Can"
    assert "average_cost" in update
