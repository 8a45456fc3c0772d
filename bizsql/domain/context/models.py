"""
Business context data models
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from bizsql.domain.ontology.models import BusinessEntity
from bizsql.domain.time_resolver import TimeContext


class IntentType(Enum):
    """Closed set of question intents."""
    ANALYTICAL = "Analytical"
    AGGREGATION = "Aggregation"
    COMPARISON = "Comparison"
    TREND = "Trend"
    DETAIL = "Detail"
    OPERATIONAL = "Operational"
    EXPLORATORY = "Exploratory"


@dataclass(frozen=True)
class DomainMatch:
    name: str
    confidence: float


@dataclass(frozen=True)
class BusinessContextProfile:
    """
    Interpreted meaning of one question.

    Immutable once returned by the analyzer; retrieval, prompting and
    validation only read it.
    """
    raw_question: str
    user_id: str
    intent: IntentType
    intent_confidence: float
    domain: DomainMatch
    entities: Tuple[BusinessEntity, ...] = ()
    time_context: Optional[TimeContext] = None
    time_ambiguous: bool = False
    ambiguous_time_phrase: Optional[str] = None
    overall_confidence: float = 0.0
    top_n: Optional[int] = None  # "top 10 depositors" -> 10

    @property
    def mapped_entities(self) -> List[BusinessEntity]:
        return [e for e in self.entities if e.is_mapped]

    @property
    def entity_tables(self) -> List[str]:
        """Distinct mapped tables in entity order."""
        return list(dict.fromkeys(e.mapped_table for e in self.entities if e.is_mapped))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.raw_question,
            "user_id": self.user_id,
            "intent": self.intent.value,
            "intent_confidence": round(self.intent_confidence, 3),
            "domain": {"name": self.domain.name, "confidence": round(self.domain.confidence, 3)},
            "entities": [e.to_dict() for e in self.entities],
            "time_context": self.time_context.to_dict() if self.time_context else None,
            "time_ambiguous": self.time_ambiguous,
            "overall_confidence": round(self.overall_confidence, 3),
            "top_n": self.top_n,
        }
