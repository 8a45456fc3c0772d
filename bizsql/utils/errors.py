"""
Custom error classes for the pipeline

Every error can carry the stage that raised it plus the profile and schema
selection snapshots that produced it, so callers can diagnose a failure
without re-running the pipeline.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors"""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        profile: Any = None,
        selection: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.profile = profile
        self.selection = selection

    def with_context(self, stage: str, profile: Any = None, selection: Any = None) -> "PipelineError":
        """Attach stage and snapshots without overwriting ones set closer to the failure."""
        self.stage = self.stage or stage
        if self.profile is None:
            self.profile = profile
        if self.selection is None:
            self.selection = selection
        return self

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class AnalysisError(PipelineError):
    """Malformed, empty or oversized question"""
    pass


class NoRelevantSchemaError(PipelineError):
    """No table cleared the relevance floor"""
    pass


class TokenBudgetExceeded(PipelineError):
    """Context does not fit in the token budget"""
    pass


class ModelError(PipelineError):
    """Generative model transport or provider failure"""
    pass


class CircuitOpenError(PipelineError):
    """A circuit breaker is open and the call was rejected without trying"""
    pass


class DryRunError(PipelineError):
    """Dry-run sandbox transport failure (not a SQL syntax error)"""
    pass


class ValidationFailure(PipelineError):
    """One or more validation layers failed after all correction attempts"""

    def __init__(self, message: str, issues: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.issues = issues or []


class SecurityViolation(ValidationFailure):
    """Generated SQL was blocked by the security layer; never corrected or retried"""
    pass


class PipelineCancelled(PipelineError):
    """Caller cancelled the request or its deadline passed"""
    pass
