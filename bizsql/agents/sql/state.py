"""
SQL agent workflow state
"""

from typing import Any, Dict, List, Optional, TypedDict

from bizsql.agents.sql.models import CorrectionAttempt, GeneratedSql, ValidationResult
from bizsql.domain.context.models import BusinessContextProfile
from bizsql.prompting.assembler import PromptContext
from bizsql.retrieval.models import SchemaSelection
from bizsql.utils.errors import TokenBudgetExceeded


class SQLGraphState(TypedDict, total=False):
    """State for the generate / validate / correct workflow"""
    profile: BusinessContextProfile
    selection: SchemaSelection
    prompt_context: PromptContext
    sql: str
    attempt: int  # 1 for the first generation, +1 per correction
    model_used: str
    generated: List[GeneratedSql]
    validation_results: List[ValidationResult]
    score: float  # Overall score of the latest validated attempt
    corrections: List[CorrectionAttempt]
    history: List[Dict[str, Any]]  # Rendered into correction prompts
    status: str  # AttemptStatus value
    failure_reason: Optional[str]
    budget_error: Optional[TokenBudgetExceeded]  # Set when a correction request could not fit
    trace_id: str
