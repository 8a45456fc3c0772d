"""
Intent classification by weighted pattern scoring.

Each intent owns a list of patterns; a question scores the sum of the
weights of the patterns it matches. The best score wins, ties go to the
intent whose matched pattern is the most specific. Adding an intent means
adding an ``IntentType`` member and its entry in ``INTENT_PATTERNS``.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from loguru import logger

from bizsql.domain.context.models import IntentType


@dataclass(frozen=True)
class IntentPattern:
    regex: Pattern
    weight: float
    specificity: int  # Higher wins ties


def _p(pattern: str, weight: float, specificity: int) -> IntentPattern:
    return IntentPattern(re.compile(pattern, re.IGNORECASE), weight, specificity)


INTENT_PATTERNS: Dict[IntentType, Tuple[IntentPattern, ...]] = {
    IntentType.AGGREGATION: (
        _p(r"\b(total|sum|count|how many|number of|average|avg)\b", 1.0, 1),
        _p(r"\btop\s+\d+\b", 0.9, 3),
        _p(r"\b(highest|lowest|most|least|biggest)\b", 0.6, 2),
        _p(r"\bper\b", 0.5, 2),
        # "by <dimension>" groups; ordering and sorting do not
        _p(r"\b(?<!order )(?<!sort )(?<!sorted )(?<!ordered )by\s+(?!the way\b)[a-z]+", 0.5, 2),
    ),
    IntentType.COMPARISON: (
        _p(r"\b(compare|comparison|versus|vs\.?)\b", 1.2, 2),
        _p(r"\b(difference between|compared (to|with))\b", 1.2, 3),
    ),
    IntentType.TREND: (
        _p(r"\b(trend|trends|over time|growth)\b", 1.2, 2),
        _p(r"\b(month over month|year over year|week over week)\b", 1.4, 3),
        _p(r"\b(daily|weekly|monthly|quarterly)\b", 0.6, 1),
    ),
    IntentType.DETAIL: (
        _p(r"\b(details?|records?|rows?)\b", 0.8, 1),
        _p(r"\b(list all|show all|details of)\b", 1.0, 2),
        _p(r"\b(show|list)\b", 0.4, 1),
    ),
    IntentType.OPERATIONAL: (
        _p(r"\b(status|pending|failed|blocked|active)\b", 0.8, 1),
        _p(r"\b(right now|currently)\b", 0.6, 2),
    ),
    IntentType.EXPLORATORY: (
        _p(r"\b(explore|what data|which tables|what tables|available data)\b", 1.0, 2),
    ),
    IntentType.ANALYTICAL: (
        _p(r"\b(why|analy[sz]e|analysis|insights?|breakdown|distribution)\b", 0.9, 2),
    ),
}

DEFAULT_INTENT = IntentType.ANALYTICAL
DEFAULT_INTENT_CONFIDENCE = 0.3

_TOP_N = re.compile(r"\btop\s+(\d+)\b", re.IGNORECASE)


@dataclass(frozen=True)
class IntentClassification:
    intent: IntentType
    confidence: float
    matched: Tuple[str, ...] = ()


def classify_intent(question: str) -> IntentClassification:
    """Score every intent and pick the winner (see module docstring for tie rules)."""
    scores: Dict[IntentType, float] = {}
    specificity: Dict[IntentType, int] = {}
    matched: Dict[IntentType, List[str]] = {}

    for intent, patterns in INTENT_PATTERNS.items():
        for pattern in patterns:
            if pattern.regex.search(question):
                scores[intent] = scores.get(intent, 0.0) + pattern.weight
                specificity[intent] = max(specificity.get(intent, 0), pattern.specificity)
                matched.setdefault(intent, []).append(pattern.regex.pattern)

    if not scores:
        logger.debug("No intent pattern matched; defaulting to Analytical")
        return IntentClassification(DEFAULT_INTENT, DEFAULT_INTENT_CONFIDENCE)

    order = list(INTENT_PATTERNS)
    best = max(scores, key=lambda i: (scores[i], specificity[i], -order.index(i)))
    total = sum(scores.values())
    confidence = min(0.95, 0.5 + 0.5 * scores[best] / total)

    logger.debug(f"Intent scores: { {i.value: round(s, 2) for i, s in scores.items()} } -> {best.value}")
    return IntentClassification(best, confidence, tuple(matched[best]))


def extract_top_n(question: str) -> Optional[int]:
    match = _TOP_N.search(question)
    return int(match.group(1)) if match else None
