"""
Note Classifier

Pure functions turning LLM output and content heuristics into a note type,
a badge, a tag set and a title. No I/O: the pipeline calls the models and
hands the raw text here.

Design:
    - LLM JSON is decoded into ``ClassificationResult`` with an explicit
      default (``type=note``, no tags) on malformed output.
    - Rule-based classification (structure + weighted keywords) covers
      content too short to be worth an LLM call.
    - Heuristic tags (hashtags, entities, keyword categories) are merged
      with the LLM tags and capped at ``MAX_TAGS``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Final

from pydantic import BaseModel, Field, ValidationError, field_validator

from remen.models.schemas import CAPTURE_TYPES, CLASSIFIABLE_TYPES, NoteType

logger = logging.getLogger(__name__)

MAX_TAGS: Final[int] = 5
MAX_TAG_LENGTH: Final[int] = 30
MAX_TITLE_LENGTH: Final[int] = 50
SHORT_CONTENT_LENGTH: Final[int] = 20  # Below this, models are not consulted

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_object(raw: str) -> dict[str, Any] | None:
    """Parse the outermost ``{...}`` block of an LLM reply, or None."""
    match = _JSON_OBJECT.search(raw or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").strip().lower()


def _match_type(value: str) -> NoteType | None:
    cleaned = re.sub(r"^(category|type|answer|result):\s*", "", value.strip().lower())
    cleaned = cleaned.strip(" .,;!?\"'")
    for candidate in CLASSIFIABLE_TYPES:
        if cleaned == candidate.value:
            return candidate
    first_word = cleaned.split()[0] if cleaned.split() else ""
    for candidate in CLASSIFIABLE_TYPES:
        if candidate.value in first_word:
            return candidate
    return None


# =============================================================================
# LLM output decoding
# =============================================================================


class ClassificationResult(BaseModel):
    """Typed decode target for the classification prompt."""

    type: NoteType = NoteType.NOTE
    tags: list[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> NoteType:
        if isinstance(value, str):
            return _match_type(value) or NoteType.NOTE
        return NoteType.NOTE

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, list):
            return []
        tags: list[str] = []
        for item in value:
            if not isinstance(item, str):
                continue
            tag = normalize_tag(item)
            if tag and len(tag) <= MAX_TAG_LENGTH and tag not in tags:
                tags.append(tag)
        return tags

    @classmethod
    def default(cls) -> ClassificationResult:
        return cls()


def parse_classification(raw: str) -> ClassificationResult:
    """
    Decode the classifier reply.

    Accepts a JSON object (possibly wrapped in prose or code fences) and,
    failing that, a bare category name. Anything else yields the default.
    """
    data = extract_json_object(raw)
    if data is not None:
        try:
            return ClassificationResult.model_validate(data)
        except ValidationError as e:
            logger.debug("Classification JSON rejected: %s", e)
            return ClassificationResult.default()

    bare = _match_type(raw or "")
    if bare is not None:
        return ClassificationResult(type=bare)
    logger.debug("Unparseable classification reply: %.80s", raw)
    return ClassificationResult.default()


# =============================================================================
# Rule-based classification
# =============================================================================

_KEYWORDS: dict[NoteType, tuple[tuple[str, float], ...]] = {
    NoteType.MEETING: (
        ("meeting", 3), ("call", 2), ("sync", 2.5), ("standup", 3), ("1:1", 3),
        ("discussed", 2), ("attendees", 3), ("agenda", 2.5), ("action items", 2.5),
        ("follow-up", 2), ("participants", 2.5), ("zoom", 2), ("recap", 2),
    ),
    NoteType.TASK: (
        ("todo", 3), ("to-do", 3), ("task", 2.5), ("[ ]", 3), ("[x]", 3),
        ("due", 2), ("deadline", 2.5), ("need to", 2), ("must", 1.5),
        ("priority", 2), ("urgent", 2.5), ("reminder", 2),
    ),
    NoteType.IDEA: (
        ("idea", 3), ("thought", 2), ("what if", 2.5), ("maybe", 1.5),
        ("brainstorm", 3), ("concept", 2), ("hypothesis", 2.5), ("wonder", 2),
        ("imagine", 2), ("potential", 1.5), ("experiment", 2),
    ),
    NoteType.JOURNAL: (
        ("today", 2), ("feeling", 2.5), ("felt", 2), ("grateful", 3),
        ("reflection", 2.5), ("diary", 3), ("mood", 2), ("woke up", 2),
        ("day was", 2), ("stressed", 2), ("happy", 2), ("sad", 2), ("excited", 2),
    ),
    NoteType.REFERENCE: (
        ("definition", 2.5), ("reference", 2.5), ("source", 2), ("article", 2),
        ("documentation", 2.5), ("guide", 2), ("tutorial", 2), ("how to", 2),
        ("example", 1.5), ("syntax", 2),
    ),
}

_BULLET = re.compile(r"^\s*[-•*]\s")
_NUMBERED = re.compile(r"^\s*\d+[.)]\s")
_CHECKBOX = re.compile(r"\[[\sx]\]", re.IGNORECASE)
_CODE = re.compile(r"```[\s\S]*?```|`[^`]+`")
_URL = re.compile(r"https?://|www\.", re.IGNORECASE)
_FIRST_PERSON = re.compile(r"\bi\s|\bmy\b|\bme\b|\bmyself\b|\bi'm\b|\bi've\b|\bi'll\b")
_TIME_REF = re.compile(
    r"\d{1,2}:\d{2}|\d{1,2}\s*(am|pm)|morning|afternoon|evening|today|yesterday|tomorrow",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RuleClassification:
    type: NoteType
    confidence: float


def classify_with_rules(content: str) -> RuleClassification:
    """
    Score each classifiable type from structure and weighted keywords.

    Returns ``note`` when no type scores at least 2.
    """
    lower = content.lower()
    lines = [line for line in content.split("\n") if line.strip()]
    scores: dict[NoteType, float] = {t: 0.0 for t in CLASSIFIABLE_TYPES}

    # Structure
    bullets = sum(1 for line in lines if _BULLET.search(line))
    numbered = sum(1 for line in lines if _NUMBERED.search(line))
    checkboxes = sum(1 for line in lines if _CHECKBOX.search(line))
    if checkboxes:
        scores[NoteType.TASK] += checkboxes * 3
    if bullets > 2:
        scores[NoteType.TASK] += 1.5
        scores[NoteType.MEETING] += 1
    if numbered > 2:
        scores[NoteType.TASK] += 1.5
        scores[NoteType.REFERENCE] += 1

    questions = content.count("?")
    if questions > 2:
        scores[NoteType.IDEA] += questions * 0.5

    if _CODE.search(content):
        scores[NoteType.REFERENCE] += 2.5
    if _URL.search(content):
        scores[NoteType.REFERENCE] += 2

    words = len(lower.split())
    if words:
        density = len(_FIRST_PERSON.findall(lower)) / words
        if density > 0.05:
            scores[NoteType.JOURNAL] += density * 30

    if _TIME_REF.search(content):
        scores[NoteType.MEETING] += 1
        scores[NoteType.JOURNAL] += 1

    # Keywords
    for note_type, keywords in _KEYWORDS.items():
        for word, weight in keywords:
            if word in lower:
                scores[note_type] += weight

    best_type = NoteType.NOTE
    best_score = 0.0
    for note_type, score in scores.items():
        if score > best_score:
            best_type, best_score = note_type, score

    if best_score < 2:
        return RuleClassification(NoteType.NOTE, 0.8)

    ordered = sorted(scores.values(), reverse=True)
    margin = ordered[0] - ordered[1]
    confidence = min(0.4 + margin * 0.1 + best_score * 0.03, 0.95)
    return RuleClassification(best_type, confidence)


def resolve_type(classified: NoteType, current: NoteType) -> NoteType:
    """Voice and scan notes keep their capture type."""
    return current if current in CAPTURE_TYPES else classified


# =============================================================================
# Heuristic tags
# =============================================================================

_HASHTAG = re.compile(r"#([a-zA-Z][a-zA-Z0-9_-]{1,30})")

_ENTITY_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("dated", re.compile(r"\b(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b", re.I)),
    (
        "dated",
        re.compile(
            r"\b(?:january|february|march|april|may|june|july|august|september"
            r"|october|november|december)\s+\d{1,2}",
            re.I,
        ),
    ),
    ("dated", re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b")),
    ("scheduled", re.compile(r"\b\d{1,2}:\d{2}\s*(?:am|pm)?\b", re.I)),
    ("finance", re.compile(r"\$\d+(?:\.\d{2})?|\b\d+\s*(?:dollars|usd|eur|gbp)\b", re.I)),
    ("contact", re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")),
    ("contact", re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")),
    ("reference", re.compile(r"https?://\S+", re.I)),
)

_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "work": ("project", "deadline", "client", "meeting", "team", "office", "work", "job", "career"),
    "personal": ("family", "friend", "home", "personal", "self", "life", "health"),
    "health": ("workout", "exercise", "gym", "run", "sleep", "diet", "nutrition", "health", "doctor", "medical"),
    "finance": ("budget", "savings", "investment", "expense", "income", "money", "bank", "pay"),
    "learning": ("learn", "study", "course", "book", "read", "tutorial", "education", "research"),
    "tech": ("code", "programming", "software", "app", "developer", "api", "database", "server"),
    "creative": ("design", "art", "music", "write", "create", "creative", "story", "draw"),
    "travel": ("trip", "flight", "hotel", "travel", "vacation", "visit", "explore"),
    "food": ("recipe", "cook", "restaurant", "food", "meal", "dinner", "lunch", "breakfast"),
    "urgent": ("urgent", "asap", "important", "priority", "critical", "deadline"),
}


def _hashtags(content: str) -> list[str]:
    return [m.lower() for m in _HASHTAG.findall(content)]


def _entity_tags(content: str) -> list[str]:
    return [tag for tag, pattern in _ENTITY_PATTERNS if pattern.search(content)]


def _keyword_tags(content: str) -> list[str]:
    lower = content.lower()
    tags: list[str] = []
    for tag, keywords in _CATEGORY_KEYWORDS.items():
        present = [kw for kw in keywords if kw in lower]
        if len(present) >= 2:
            tags.append(tag)
        elif len(present) == 1:
            # A single keyword must appear at least twice as a whole word
            hits = re.findall(rf"\b{re.escape(present[0])}\b", lower)
            if len(hits) >= 2:
                tags.append(tag)
    return tags


def extract_tags(content: str) -> list[str]:
    """Heuristic tags: hashtags, then entities, then keyword categories."""
    tags: list[str] = []
    for tag in (*_hashtags(content), *_entity_tags(content), *_keyword_tags(content)):
        if tag not in tags:
            tags.append(tag)
    return tags[:MAX_TAGS]


def merge_tags(*groups: list[str]) -> list[str]:
    """Normalize, de-duplicate case-insensitively and cap at ``MAX_TAGS``."""
    merged: list[str] = []
    for group in groups:
        for tag in group:
            name = normalize_tag(tag)
            if name and name not in merged:
                merged.append(name)
    return merged[:MAX_TAGS]


# =============================================================================
# Titles and badges
# =============================================================================


def truncate_title(title: str, limit: int = MAX_TITLE_LENGTH) -> str:
    """Cut to ``limit`` characters, at a word boundary when one is close."""
    if len(title) <= limit:
        return title
    truncated = title[: limit - 3]
    last_space = truncated.rfind(" ")
    if last_space > limit * 0.5:
        return truncated[:last_space] + "..."
    return truncated + "..."


def clean_title(raw: str) -> str:
    """Normalize an LLM title reply: first line, no quotes or label prefix."""
    title = (raw or "").strip()
    title = title.split("\n", 1)[0]
    title = re.sub(r"^(title|subject|name):\s*", "", title, flags=re.IGNORECASE)
    title = title.strip().strip("\"'`").strip()
    title = re.sub(r"\s+", " ", title)
    return truncate_title(title)


_TITLE_PATTERNS: tuple[tuple[re.Pattern[str], tuple[NoteType, ...]], ...] = (
    (
        re.compile(r"^(?:meeting|call|sync|standup|1:1|review|planning)\s+(?:with|about|for|re:?)\s+(.+)", re.I),
        (NoteType.MEETING,),
    ),
    (re.compile(r"^(?:todo|task|action)\s*:?\s*(.+)", re.I), (NoteType.TASK,)),
    (re.compile(r"^(?:idea|thought|concept)\s*:?\s*(.+)", re.I), (NoteType.IDEA,)),
    (re.compile(r"^(?:note|notes)\s*:?\s*(.+)", re.I), (NoteType.NOTE, NoteType.REFERENCE)),
    (re.compile(r"^(?:journal|diary|reflection)\s*:?\s*(.+)", re.I), (NoteType.JOURNAL,)),
)


def extract_title(content: str, note_type: NoteType | None = None) -> str | None:
    """Use the first line when it already reads like a title."""
    lines = [line for line in content.split("\n") if line.strip()]
    if not lines:
        return None
    first = lines[0].strip()

    if len(first) <= MAX_TITLE_LENGTH and not first.endswith((".", ",")):
        cleaned = re.sub(r"^#{1,6}\s*", "", first)
        if 3 < len(cleaned) <= MAX_TITLE_LENGTH:
            return cleaned

    for pattern, types in _TITLE_PATTERNS:
        if note_type is not None and note_type not in types:
            continue
        match = pattern.match(first)
        if match and 3 < len(match.group(1).strip()) <= MAX_TITLE_LENGTH:
            return first
    return None


def fallback_title(content: str, note_type: NoteType | None = None) -> str:
    """Last-resort title from the first line, markdown stripped."""
    first = content.strip().split("\n", 1)[0].strip()
    cleaned = re.sub(r"^#{1,6}\s*", "", first)
    cleaned = re.sub(r"\*\*|\*|__|_|~~|`", "", cleaned)
    cleaned = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", cleaned)
    cleaned = re.sub(r"^[-•*]\s*", "", cleaned)
    cleaned = re.sub(r"^\d+[.)]\s*", "", cleaned)
    cleaned = re.sub(r"^\[[\sx]\]\s*", "", cleaned, flags=re.IGNORECASE).strip()

    if (
        note_type is not None
        and note_type != NoteType.NOTE
        and len(cleaned) < 30
        and note_type.value not in cleaned.lower()
    ):
        cleaned = f"{note_type.value.capitalize()}: {cleaned}"

    return truncate_title(cleaned) or "Untitled Note"


def rule_based_title(content: str, note_type: NoteType | None = None) -> str:
    return extract_title(content, note_type) or fallback_title(content, note_type)


_BADGE_COLORS: dict[NoteType, str] = {
    NoteType.MEETING: "#3B82F6",
    NoteType.TASK: "#F59E0B",
    NoteType.IDEA: "#8B5CF6",
    NoteType.JOURNAL: "#10B981",
    NoteType.REFERENCE: "#6B7280",
    NoteType.VOICE: "#EF4444",
    NoteType.SCAN: "#D97706",
    NoteType.NOTE: "#9CA3AF",
}


def get_note_type_badge(note_type: NoteType | str) -> dict[str, str]:
    """Display label and colors for a note type (unknown values map to ``note``)."""
    try:
        resolved = NoteType(note_type)
    except ValueError:
        resolved = NoteType.NOTE
    color = _BADGE_COLORS[resolved]
    return {
        "label": resolved.value.capitalize(),
        "color": color,
        "bg_color": f"{color}20",  # 12% alpha
    }
