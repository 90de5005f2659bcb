"""
Query Interpretation

Decides whether a search request deserves an LLM round-trip, decodes the
LLM's structured interpretation, and extracts lexical keywords.

Design:
    - ``should_use_llm``: cheap regex gate (questions, "what I wrote",
      time words, "ideas about ...").
    - ``interpret_query``: typed decode-with-default. Malformed output is
      ``None`` (search proceeds uninterpreted); model failures propagate so
      the search engine can log and degrade.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from remen.services.classifier import extract_json_object
from remen.services.models import LLMModel, Message
from remen.services.prompts import INTERPRET_SYSTEM_TEMPLATE

logger = logging.getLogger(__name__)

_LLM_QUERY_PATTERNS = (
    re.compile(
        r"^(what|let's|let us|discuss|do you|when|where|how|why|who|which|whose"
        r"|find|show|tell me|can you)\b",
        re.I,
    ),
    re.compile(r"\bi (wrote|thought|was thinking|noted)\b|\bmy (notes|thoughts)\b", re.I),
    re.compile(r"\b(recently|yesterday|last (week|month|year)|this (week|month))\b", re.I),
    re.compile(r"\b(about|regarding|concerning) .+", re.I),
    re.compile(r"\b(ideas?|concepts?|thoughts?) (about|on|for)\b", re.I),
    re.compile(r"\b(help me|remind me|remember|please)\b", re.I),
    re.compile(r"\bnotes? (about|on|for|of|regarding|concerning|to)\b", re.I),
)

TEMPORAL_ONLY_PATTERNS = (
    re.compile(r"^what\s+(i\s+)?(wrote|was\s+thinking|thought|noted)\s*[?.]?\s*$", re.I),
    re.compile(r"^what\s+did\s+i\s+(write|note)(\s+down)?\s*[?.]?\s*$", re.I),
    re.compile(r"^notes?\s+(from|i\s+wrote)\s*[?.]?\s*$", re.I),
    re.compile(r"^(from|my\s+notes?)\s*[?.]?\s*$", re.I),
)

STOP_WORDS = frozenset(
    """
    a an the and or but in on at to for of with by from as is was are were been be
    have has had do does did will would could should may might must shall can need
    i me my myself we our ours ourselves you your yours yourself yourselves he him
    his himself she her hers herself it its itself they them their theirs themselves
    what which who whom this that these those am being having doing if because until
    while about against between into through during before after above below up down
    out off over under again further then once here there when where why how all each
    few more most other some such no nor not only own same so than too very just
    notes note wrote write written thinking thought
    """.split()
)


def should_use_llm(text: str) -> bool:
    """True when the request reads like a question rather than keywords."""
    return any(p.search(text) for p in _LLM_QUERY_PATTERNS)


def is_temporal_only(remainder: str) -> bool:
    """True when nothing but filler ("what did I write") is left after the time expression."""
    stripped = re.sub(r"[?.!,]", " ", remainder).strip()
    if not stripped:
        return True
    return any(p.match(remainder.strip()) for p in TEMPORAL_ONLY_PATTERNS)


def normalize_text(text: str) -> str:
    lowered = re.sub(r"[^a-z0-9\s']", " ", text.strip().lower())
    return " ".join(lowered.split())


def extract_keywords(text: str) -> list[str]:
    """Quoted phrases first, then distinct non-stop-word tokens."""
    phrases = [p.strip().lower() for p in re.findall(r'"([^"]{1,80})"', text) if p.strip()]
    keywords: list[str] = []
    for token in normalize_text(text).split():
        if len(token) >= 2 and token not in STOP_WORDS and token not in keywords:
            keywords.append(token)
    return phrases + [k for k in keywords if k not in phrases]


class QueryInterpretation(BaseModel):
    """Typed decode target for the interpretation prompt."""

    interpreted_query: str = Field(min_length=1)
    temporal_hint: str | None = None
    search_terms: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("temporal_hint", mode="before")
    @classmethod
    def _empty_hint_is_none(cls, value: object) -> object:
        if isinstance(value, str) and value.strip().lower() in {"", "null", "none"}:
            return None
        return value

    @field_validator("search_terms", "topics", mode="before")
    @classmethod
    def _clean_terms(cls, value: object) -> object:
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        return value

    def lexical_terms(self) -> list[str]:
        """Search terms plus topics not already covered by a term."""
        terms = list(self.search_terms)
        lowered = [t.lower() for t in terms]
        for topic in self.topics:
            if not any(topic.lower() in t for t in lowered):
                terms.append(topic)
        return terms


def parse_interpretation(raw: str) -> QueryInterpretation | None:
    data = extract_json_object(raw)
    if data is None:
        logger.debug("Interpretation reply is not JSON: %.80s", raw)
        return None
    try:
        return QueryInterpretation.model_validate(data)
    except ValidationError as e:
        logger.debug("Interpretation JSON rejected: %s", e)
        return None


def build_interpret_messages(text: str, now: datetime) -> list[Message]:
    system = INTERPRET_SYSTEM_TEMPLATE.format(
        today=now.date().isoformat(),
        weekday=now.strftime("%A"),
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": f'Please analyze this query: "{text}"'},
    ]


async def interpret_query(
    text: str,
    llm: LLMModel,
    now: datetime,
) -> QueryInterpretation | None:
    """
    Ask the LLM to interpret a natural-language search request.

    Args:
        text: Raw user query.
        llm: Ready LLM handle.
        now: Current time, given to the model to anchor relative dates.

    Returns:
        The decoded interpretation, or None on malformed output.

    Raises:
        InferenceError: If the model call itself fails.
    """
    raw = await llm.generate(build_interpret_messages(text, now))
    interpretation = parse_interpretation(raw)
    if interpretation is not None:
        logger.info(
            "Query interpreted: %r -> %r (hint=%s)",
            text,
            interpretation.interpreted_query,
            interpretation.temporal_hint,
        )
    return interpretation
