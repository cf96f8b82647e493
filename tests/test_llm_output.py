"""Tests for tolerant LLM JSON parsing."""
from __future__ import annotations

from services.llm_output import extract_text, find_largest_json_object, parse_tolerant


def test_plain_json():
    assert parse_tolerant('{"summaryText": "ok", "score": 7}') == {"summaryText": "ok", "score": 7}


def test_json_inside_prose_and_fences():
    raw = 'Here is the analysis:\n```json\n{"summaryText": "Good {risk} control", "score": 8}\n```\nThanks!'
    assert parse_tolerant(raw) == {"summaryText": "Good {risk} control", "score": 8}


def test_almost_json_is_repaired():
    raw = "Result: {summaryText: 'Held too long', plusPoints: ['Clean entry',], score: 4,}"
    assert parse_tolerant(raw) == {
        "summaryText": "Held too long",
        "plusPoints": ["Clean entry"],
        "score": 4,
    }


def test_smart_quotes_are_normalized():
    raw = "{“summaryText”: “Patient exit”}"
    assert parse_tolerant(raw) == {"summaryText": "Patient exit"}


def test_largest_object_wins():
    text = 'first {"a": 1} then {"summaryText": "bigger", "b": [1, 2]}'
    assert find_largest_json_object(text) == '{"summaryText": "bigger", "b": [1, 2]}'


def test_openai_like_shape():
    raw = {"choices": [{"message": {"content": '{"summaryText": "from choices"}'}}]}
    assert extract_text(raw) == '{"summaryText": "from choices"}'
    assert parse_tolerant(raw) == {"summaryText": "from choices"}


def test_unparseable_returns_none():
    assert parse_tolerant("The model is having a bad day.") is None
    assert parse_tolerant("") is None
    assert parse_tolerant(None) is None
