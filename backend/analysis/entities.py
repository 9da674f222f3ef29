"""
Entity extraction for free-text sales questions.

Each entity family is probed independently with its own regular expression;
a field is flagged when its pattern matches anywhere in the question. Only
temporal matches keep the matched text. Geographic values come from the fixed
state list first and from an ``in|for <word>`` positional pattern second.
"""
import re
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from analysis.schema import STATE_NAMES
from app.utils.helpers import title_case
from core.logging import get_logger

logger = get_logger(__name__)


class TemporalKind(str, Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"
    RANGE = "range"


class TemporalEntity(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TemporalKind
    raw_value: str


class EntitySet(BaseModel):
    """Entities found in one question. Built once per request, never mutated."""
    model_config = ConfigDict(frozen=True)

    geographic: Optional[str] = None
    temporal: Tuple[TemporalEntity, ...] = ()
    categorical: Tuple[str, ...] = ()
    metrics: Tuple[str, ...] = ()
    year: Optional[int] = None
    limit: Optional[int] = None
    comparison_values: Tuple[str, ...] = ()

    def has_temporal(self, kind: TemporalKind) -> bool:
        return any(t.kind == kind for t in self.temporal)


METRIC_PATTERNS = [
    ("sales", re.compile(r"\b(?:sales|revenues?|income)\b", re.IGNORECASE)),
    ("profit", re.compile(r"\b(?:profits?|gains?|loss(?:es)?)\b", re.IGNORECASE)),
    ("quantity", re.compile(r"\b(?:quantity|quantities|amount|count)\b", re.IGNORECASE)),
    ("discount", re.compile(r"\b(?:discounts?|rebates?)\b", re.IGNORECASE)),
]

_STATE_ALTERNATION = "|".join(re.escape(s) for s in STATE_NAMES)

CATEGORICAL_PATTERNS = [
    ("customer_name", re.compile(r"\b(?:customers?|clients?|buyers?)\b", re.IGNORECASE)),
    ("product_name", re.compile(r"\b(?:products?|items?|goods)\b", re.IGNORECASE)),
    ("sub_category", re.compile(r"\b(?:sub-?categor(?:y|ies))\b", re.IGNORECASE)),
    ("category", re.compile(r"\b(?:categor(?:y|ies))\b", re.IGNORECASE)),
    ("segment", re.compile(r"\bsegments?\b", re.IGNORECASE)),
    ("region", re.compile(r"\b(?:regions?|areas?)\b", re.IGNORECASE)),
    ("country", re.compile(r"\b(?:country|countries|nations?)\b", re.IGNORECASE)),
    ("state", re.compile(rf"\b(?:states?|provinces?|{_STATE_ALTERNATION})\b", re.IGNORECASE)),
    ("city", re.compile(r"\b(?:city|cities|towns?)\b", re.IGNORECASE)),
    ("ship_mode", re.compile(r"\b(?:ship mode|shipping method)s?\b", re.IGNORECASE)),
]

TEMPORAL_PATTERNS = [
    (TemporalKind.ABSOLUTE, re.compile(r"\b\d{4}(?:-\d{2}(?:-\d{2})?)?\b")),
    (TemporalKind.RELATIVE, re.compile(r"\b(?:last|this|next)\s+(?:day|week|month|quarter|year)\b", re.IGNORECASE)),
    (TemporalKind.RANGE, re.compile(r"\bbetween\s+\S.*?\s+and\s+\S+", re.IGNORECASE)),
]

GEO_POSITIONAL = re.compile(r"\b(?:in|for)\s+([A-Za-z]+)\b", re.IGNORECASE)
YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")
LIMIT_PATTERN = re.compile(r"\b(?:top|bottom)\s+(\d+)\b", re.IGNORECASE)
BETWEEN_PATTERN = re.compile(r"\bbetween\s+([A-Za-z][A-Za-z ]*?)\s+and\s+([A-Za-z][A-Za-z ]*)", re.IGNORECASE)
VERSUS_PATTERN = re.compile(r"([A-Za-z][A-Za-z ]*?)\s+(?:vs\.?|versus)\s+([A-Za-z][A-Za-z ]*)", re.IGNORECASE)

# Words the positional pattern must not mistake for a place ("for each region")
_NON_PLACE_WORDS = frozenset({
    "the", "a", "an", "each", "every", "all", "my", "our", "this", "that",
    "last", "next", "total", "terms", "sales", "revenue", "profit", "quantity",
    "discount", "customers", "customer", "products", "product", "category",
    "categories", "segment", "segments", "region", "regions", "month", "months",
    "year", "years", "state", "states", "city", "cities",
})


def extract_year(question: str) -> Optional[int]:
    """First 4-digit year between 1900 and 2099, or None."""
    match = YEAR_PATTERN.search(question or "")
    return int(match.group(0)) if match else None


def extract_limit(question: str) -> Optional[int]:
    """N from "top N" / "bottom N"; None lets the caller apply its default."""
    match = LIMIT_PATTERN.search(question or "")
    return int(match.group(1)) if match else None


def extract_geographic(question: str) -> Optional[str]:
    """
    Resolve the geographic filter of a question.

    The state list is scanned in its fixed order and the first name contained
    in the question wins, so "West Virginia" resolves to "Virginia" because
    "Virginia" comes first in the list. Without a list hit, the word after
    "in"/"for" is used, title-cased.
    """
    lowered = (question or "").lower()
    for state in STATE_NAMES:
        if state.lower() in lowered:
            return state

    for match in GEO_POSITIONAL.finditer(question or ""):
        word = match.group(1)
        if word.lower() not in _NON_PLACE_WORDS:
            return title_case(word)
    return None


def _state_suffix(text: str) -> str:
    lowered = text.strip().lower()
    for state in sorted(STATE_NAMES, key=len, reverse=True):
        if lowered.endswith(state.lower()):
            return state
    words = text.split()
    return title_case(words[-1]) if words else ""


def _state_prefix(text: str) -> str:
    lowered = text.strip().lower()
    for state in sorted(STATE_NAMES, key=len, reverse=True):
        if lowered.startswith(state.lower()):
            return state
    words = text.split()
    return title_case(words[0]) if words else ""


def _states_in_text_order(question: str) -> List[str]:
    lowered = question.lower()
    spans = []
    for state in STATE_NAMES:
        start = lowered.find(state.lower())
        while start != -1:
            spans.append((start, start + len(state), state))
            start = lowered.find(state.lower(), start + 1)

    # Longest span first at equal start, then drop names nested in a longer one
    spans.sort(key=lambda s: (s[0], -(s[1] - s[0])))
    found: List[str] = []
    covered_until = -1
    for start, end, state in spans:
        if start < covered_until:
            continue
        covered_until = end
        if state not in found:
            found.append(state)
    return found


def extract_comparison_values(question: str) -> List[str]:
    """
    Values to compare, from "between X and Y", "X vs Y", or every state
    named in the question (text order). Missing values yield a short list;
    the planner decides whether that is enough.
    """
    text = question or ""
    for pattern in (BETWEEN_PATTERN, VERSUS_PATTERN):
        match = pattern.search(text)
        if match:
            values = [_state_suffix(match.group(1)), _state_prefix(match.group(2))]
            values = [v for v in values if v]
            if len(set(values)) == len(values):
                return values
            return values[:1]
    return _states_in_text_order(text)


class EntityExtractor:
    """Runs every probe over a question and returns an immutable EntitySet."""

    def extract(self, question: str) -> EntitySet:
        text = question or ""

        temporal = []
        for kind, pattern in TEMPORAL_PATTERNS:
            match = pattern.search(text)
            if match:
                temporal.append(TemporalEntity(kind=kind, raw_value=match.group(0).strip()))

        entities = EntitySet(
            geographic=extract_geographic(text),
            temporal=tuple(temporal),
            categorical=tuple(f for f, p in CATEGORICAL_PATTERNS if p.search(text)),
            metrics=tuple(f for f, p in METRIC_PATTERNS if p.search(text)),
            year=extract_year(text),
            limit=extract_limit(text),
            comparison_values=tuple(extract_comparison_values(text)),
        )
        logger.debug("Extracted entities: %s", entities.model_dump())
        return entities
