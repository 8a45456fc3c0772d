"""
SQL generation and validation data models
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple


class ValidationLayer(Enum):
    """Validation layers, declared in execution order."""
    SECURITY = "Security"
    SCHEMA_COMPLIANCE = "SchemaCompliance"
    SEMANTIC = "Semantic"
    BUSINESS_LOGIC = "BusinessLogic"
    DRY_RUN = "DryRun"


LAYER_ORDER: Tuple[ValidationLayer, ...] = tuple(ValidationLayer)


class IssueSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"  # Advisory; never fails a layer


@dataclass(frozen=True)
class ValidationIssue:
    layer: ValidationLayer
    code: str
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    correctable: bool = True

    @property
    def is_error(self) -> bool:
        return self.severity == IssueSeverity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layer": self.layer.value,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "correctable": self.correctable,
        }


ERROR_PENALTY = 0.25
WARNING_PENALTY = 0.05


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one layer for one attempt."""
    layer: ValidationLayer
    passed: bool
    issues: Tuple[ValidationIssue, ...] = ()
    score: float = 1.0

    @classmethod
    def from_issues(cls, layer: ValidationLayer, issues) -> "ValidationResult":
        issues = tuple(issues)
        errors = sum(1 for i in issues if i.is_error)
        warnings = len(issues) - errors
        score = max(0.0, 1.0 - ERROR_PENALTY * errors - WARNING_PENALTY * warnings)
        return cls(layer=layer, passed=errors == 0, issues=issues, score=score)

    @property
    def errors(self) -> Tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if i.is_error)


@dataclass(frozen=True)
class GeneratedSql:
    text: str
    generation_attempt: int
    model_used: str


@dataclass(frozen=True)
class CorrectionAttempt:
    """One self-correction cycle: the failing SQL, its issues and the model's rewrite."""
    attempt_number: int
    prior_sql: str
    issues: Tuple[ValidationIssue, ...]
    corrected_sql: str = ""
    improvement_score: float = 0.0


class AttemptStatus(Enum):
    """States of the generation / validation machine."""
    GENERATED = "Generated"
    VALIDATING = "Validating"
    VALID = "Valid"
    INVALID = "Invalid"
    CORRECTION_REQUESTED = "CorrectionRequested"
    REGENERATED = "Regenerated"
    FAILED = "Failed"


@dataclass(frozen=True)
class OverallResult:
    """Aggregate of every layer that ran for one attempt."""
    results: Tuple[ValidationResult, ...] = field(default=())

    @property
    def valid(self) -> bool:
        return bool(self.results) and len(self.results) == len(LAYER_ORDER) and all(r.passed for r in self.results)

    @property
    def score(self) -> float:
        if not self.results:
            return 0.0
        # Layers that never ran count as zero
        return sum(r.score for r in self.results) / len(LAYER_ORDER)

    @property
    def issues(self) -> Tuple[ValidationIssue, ...]:
        return tuple(i for r in self.results for i in r.issues)

    @property
    def blocking_issues(self) -> Tuple[ValidationIssue, ...]:
        return tuple(i for r in self.results for i in r.errors)
