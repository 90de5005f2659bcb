"""
Query Interpretation Unit Tests

LLM gating, keyword extraction and decoding of the interpretation reply.
"""

from __future__ import annotations

import json
from datetime import datetime

import pytest
from fakes import FakeLLM

from remen.core.errors import InferenceError
from remen.services.interpretation import (
    QueryInterpretation,
    build_interpret_messages,
    extract_keywords,
    interpret_query,
    is_temporal_only,
    parse_interpretation,
    should_use_llm,
)


class TestGating:
    @pytest.mark.parametrize(
        "text",
        [
            "what was I thinking about last week",
            "notes about the product launch",
            "ideas for the garden",
            "remind me of the dentist",
            "travel yesterday",
        ],
    )
    def test_questions_use_llm(self, text: str) -> None:
        assert should_use_llm(text)

    @pytest.mark.parametrize("text", ["budget", "lisbon trip", "react hooks"])
    def test_keywords_skip_llm(self, text: str) -> None:
        assert not should_use_llm(text)

    @pytest.mark.parametrize("remainder", ["", "?", "what i wrote", "what did i write down?"])
    def test_temporal_only(self, remainder: str) -> None:
        assert is_temporal_only(remainder)

    def test_topic_remainder_is_not_temporal_only(self) -> None:
        assert not is_temporal_only("travel plans")


class TestKeywords:
    def test_stop_words_removed(self) -> None:
        assert extract_keywords("What did I write about the Lisbon trip?") == ["lisbon", "trip"]

    def test_quoted_phrases_first(self) -> None:
        assert extract_keywords('notes on "design review" and budget') == [
            "design review",
            "design",
            "review",
            "budget",
        ]

    def test_duplicates_removed(self) -> None:
        assert extract_keywords("budget budget BUDGET") == ["budget"]


class TestParsing:
    def test_camel_case_reply(self) -> None:
        raw = json.dumps(
            {
                "interpretedQuery": "budget meeting",
                "temporalHint": "null",
                "searchTerms": ["budget", " "],
                "topics": ["finance", "budget"],
            }
        )

        parsed = parse_interpretation(raw)

        assert parsed == QueryInterpretation(
            interpreted_query="budget meeting",
            temporal_hint=None,
            search_terms=["budget"],
            topics=["finance", "budget"],
        )
        assert parsed.lexical_terms() == ["budget", "finance"]

    @pytest.mark.parametrize(
        "raw",
        ["not json", '{"temporalHint": "today"}', '{"interpretedQuery": ""}', "[]"],
    )
    def test_invalid_reply(self, raw: str) -> None:
        assert parse_interpretation(raw) is None

    def test_messages_carry_the_date(self, now: datetime) -> None:
        messages = build_interpret_messages("travel last week", now)

        assert "2026-03-18 (Wednesday)" in messages[0]["content"]
        assert messages[1] == {
            "role": "user",
            "content": 'Please analyze this query: "travel last week"',
        }


class TestInterpretQuery:
    @pytest.mark.asyncio
    async def test_returns_interpretation(self, now: datetime) -> None:
        llm = FakeLLM('{"interpretedQuery": "travel", "temporalHint": "last week"}')

        result = await interpret_query("travel last week", llm, now)

        assert result is not None
        assert result.temporal_hint == "last week"

    @pytest.mark.asyncio
    async def test_malformed_reply_is_none(self, now: datetime) -> None:
        llm = FakeLLM("Sorry, I can't help with that.")
        assert await interpret_query("travel", llm, now) is None

    @pytest.mark.asyncio
    async def test_model_failure_propagates(self, now: datetime) -> None:
        llm = FakeLLM(InferenceError("Ollama API error: 503"))
        with pytest.raises(InferenceError):
            await interpret_query("travel", llm, now)
