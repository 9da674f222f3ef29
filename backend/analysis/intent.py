"""
Rule-based intent classification.

A question gets exactly one category. Rules are evaluated in a fixed priority
order and the first rule whose pattern matches wins, so "compare top
customers" is a comparison even though it also mentions "top". The final
rule always matches and labels the question ``general``.
"""
import re
from enum import Enum
from typing import List, Optional, Pattern

from pydantic import BaseModel, ConfigDict

from core.logging import get_logger

logger = get_logger(__name__)


class IntentCategory(str, Enum):
    RANKING = "ranking"
    TREND = "trend"
    COMPARISON = "comparison"
    DISTRIBUTION = "distribution"
    COMPOSITION = "composition"
    GENERAL = "general"


class IntentSubtype(str, Enum):
    TIME_BASED = "time_based"
    RANKING = "ranking"
    CATEGORICAL = "categorical"


class Operation(str, Enum):
    RANK = "rank"
    TREND = "trend"
    COMPARE = "compare"
    AGGREGATE = "aggregate"


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class Intent(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: IntentCategory
    subtype: Optional[IntentSubtype] = None
    operation: Optional[Operation] = None
    direction: SortDirection = SortDirection.DESC


class IntentRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: IntentCategory
    pattern: Optional[Pattern] = None
    operation: Optional[Operation] = None

    def matches(self, question: str) -> bool:
        return self.pattern is None or bool(self.pattern.search(question))


def _rx(expr: str) -> Pattern:
    return re.compile(expr, re.IGNORECASE)


INTENT_RULES: List[IntentRule] = [
    IntentRule(
        category=IntentCategory.COMPARISON,
        pattern=_rx(r"\b(?:compare|comparison|comparing|versus|vs\.?|difference between)\b"),
        operation=Operation.COMPARE,
    ),
    IntentRule(
        category=IntentCategory.RANKING,
        pattern=_rx(r"\b(?:top|bottom)\b"),
        operation=Operation.RANK,
    ),
    IntentRule(
        category=IntentCategory.TREND,
        pattern=_rx(r"\b(?:trends?|change|growth|decline|over time|how has|how did|track|progress)\b"),
        operation=Operation.TREND,
    ),
    IntentRule(
        category=IntentCategory.DISTRIBUTION,
        pattern=_rx(r"\b(?:distribut\w*|spread|range|variation|how many)\b"),
        operation=Operation.AGGREGATE,
    ),
    IntentRule(
        category=IntentCategory.COMPOSITION,
        pattern=_rx(r"\b(?:breakdown|break down|composition|make up|split|divide|what percent|percentage|proportion|share)\b"),
        operation=Operation.AGGREGATE,
    ),
    # Fallback, always matches
    IntentRule(category=IntentCategory.GENERAL),
]

# Evaluated in order, only for comparisons
SUBTYPE_RULES = [
    (IntentSubtype.TIME_BASED, _rx(r"\b(?:over time|trends?|monthly|yearly|daily)\b")),
    (IntentSubtype.RANKING, _rx(r"\b(?:top|bottom|best|worst|highest|lowest)\b")),
    (IntentSubtype.CATEGORICAL, _rx(r"\b(?:by|per|across|among)\b")),
]

BOTTOM_PATTERN = _rx(r"\b(?:bottom|lowest|worst)\b")


class IntentClassifier:
    def __init__(self, rules: List[IntentRule] = None):
        self.rules = rules or INTENT_RULES

    def classify(self, question: str) -> Intent:
        text = question or ""
        rule = next((r for r in self.rules if r.matches(text)), INTENT_RULES[-1])

        subtype = None
        if rule.category == IntentCategory.COMPARISON:
            subtype = next((s for s, p in SUBTYPE_RULES if p.search(text)), None)

        direction = SortDirection.ASC if BOTTOM_PATTERN.search(text) else SortDirection.DESC
        intent = Intent(
            category=rule.category,
            subtype=subtype,
            operation=rule.operation,
            direction=direction,
        )
        logger.debug("Classified %r as %s", text, intent.model_dump())
        return intent
