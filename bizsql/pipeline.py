"""
Query pipeline - the single entry point.

    question -> BusinessContextProfile -> SchemaSelection -> PromptContext
             -> generate / validate / correct -> PipelineResult

Every failure after analysis comes back as a ``PipelineResult`` carrying
the best partial result (profile, selection) so callers can explain why a
question was not answered. ``AnalysisError`` is the only pipeline error
raised to the caller.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple

from loguru import logger

from bizsql.agents.sql.context import SQLContext
from bizsql.agents.sql.models import (
    AttemptStatus,
    CorrectionAttempt,
    OverallResult,
    ValidationIssue,
    ValidationLayer,
    ValidationResult,
)
from bizsql.agents.sql.validation.semantic import AMBIGUOUS_TIME_CODE, ambiguous_time_issue
from bizsql.agents.sql.workflow import run_sql_workflow
from bizsql.config.settings import resolve_project_path, settings
from bizsql.domain.context.analyzer import BusinessContextAnalyzer
from bizsql.domain.context.models import BusinessContextProfile
from bizsql.domain.ontology.registry import BusinessTermDictionary
from bizsql.llm.client import LangChainModelClient, ModelClient
from bizsql.llm.embeddings import create_embeddings
from bizsql.prompting.assembler import ContextAssembler
from bizsql.retrieval.engine import SchemaRetrievalEngine
from bizsql.retrieval.models import SchemaSelection
from bizsql.retrieval.tokens import BudgetConfig, TokenBudget
from bizsql.sql.catalog.snapshot import SnapshotCatalog
from bizsql.sql.execution.dry_run import DryRunSandbox, SQLAlchemySandbox
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import (
    ModelError,
    NoRelevantSchemaError,
    PipelineCancelled,
    PipelineError,
    SecurityViolation,
    TokenBudgetExceeded,
    ValidationFailure,
)


class PipelineStatus(Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    NO_RELEVANT_SCHEMA = "NoRelevantSchema"


class TraceSink(Protocol):
    """Write-only destination for trace events."""

    def record(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoguruTraceSink:
    """Default sink: trace events go to the log."""

    def record(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info(f"[TRACE] {event} | {payload}")


@dataclass
class PipelineResult:
    """
    Outcome of one question.

    ``sql`` is only set when ``status`` is Succeeded. On Failed, the last
    attempted SQL is kept in ``last_sql`` for reporting.
    """
    status: PipelineStatus
    sql: Optional[str] = None
    confidence: float = 0.0
    issues: Tuple[ValidationIssue, ...] = ()
    profile: Optional[BusinessContextProfile] = None
    selection: Optional[SchemaSelection] = None
    prompt_tokens: int = 0
    attempts: int = 0
    corrections: Tuple[CorrectionAttempt, ...] = ()
    validation_results: Tuple[ValidationResult, ...] = ()
    last_sql: Optional[str] = None
    error_stage: Optional[str] = None
    error: Optional[PipelineError] = None
    trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def succeeded(self) -> bool:
        return self.status == PipelineStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "sql": self.sql,
            "confidence": round(self.confidence, 3),
            "issues": [i.to_dict() for i in self.issues],
            "attempts": self.attempts,
            "prompt_tokens": self.prompt_tokens,
            "error_stage": self.error_stage,
            "error": str(self.error) if self.error else None,
            "profile": self.profile.to_dict() if self.profile else None,
            "selection": self.selection.to_dict() if self.selection else None,
        }


class QueryPipeline:
    """Wires analyzer, retrieval, assembler, model and sandbox together."""

    def __init__(
        self,
        analyzer: BusinessContextAnalyzer,
        retrieval: SchemaRetrievalEngine,
        assembler: ContextAssembler,
        model: ModelClient,
        dictionary: BusinessTermDictionary,
        sandbox: Optional[DryRunSandbox] = None,
        trace_sink: Optional[TraceSink] = None,
        max_attempts: Optional[int] = None,
    ):
        self.analyzer = analyzer
        self.retrieval = retrieval
        self.assembler = assembler
        self.model = model
        self.dictionary = dictionary
        self.sandbox = sandbox
        self.trace_sink = trace_sink or LoguruTraceSink()
        self.max_attempts = settings.sql_correction_max_attempts if max_attempts is None else max_attempts

    @classmethod
    def from_settings(cls) -> "QueryPipeline":
        """Default wiring from ``settings``: snapshot catalog, registry JSON, LangChain model."""
        dictionary = BusinessTermDictionary.from_file(resolve_project_path(settings.business_registry_path))
        catalog = SnapshotCatalog.from_file(resolve_project_path(settings.catalog_snapshot_path))
        sandbox = SQLAlchemySandbox.from_url(settings.dry_run_database_url) if settings.dry_run_database_url else None
        if sandbox is None:
            logger.warning("⚠️ DRY_RUN_DATABASE_URL not set; the dry-run layer will be skipped")
        return cls(
            analyzer=BusinessContextAnalyzer(dictionary, catalog),
            retrieval=SchemaRetrievalEngine(catalog, dictionary, embeddings=create_embeddings()),
            assembler=ContextAssembler(dictionary),
            model=LangChainModelClient.from_settings(),
            dictionary=dictionary,
            sandbox=sandbox,
        )

    async def process_query(
        self,
        question: str,
        user_id: str,
        budget_config: Optional[BudgetConfig] = None,
        token: Optional[CancellationToken] = None,
    ) -> PipelineResult:
        """
        Translate one question into validated SQL.

        Raises:
            AnalysisError: empty, oversized or unanalyzable question
                (cancellation during analysis returns a Cancelled result)
        """
        trace_id = str(uuid.uuid4())
        start = time.time()
        self.trace_sink.record("pipeline_start", {"trace_id": trace_id, "user_id": user_id, "question": question})

        try:
            profile = self.analyzer.analyze(question, user_id, token=token)
        except PipelineCancelled as e:
            logger.warning(f"Pipeline cancelled during {e.stage}: {e.message}")
            result = PipelineResult(
                status=PipelineStatus.CANCELLED,
                error_stage=e.stage or "analysis",
                error=e,
                trace_id=trace_id,
            )
        else:
            self.trace_sink.record("analysis", {"trace_id": trace_id, "profile": profile.to_dict()})
            result = await self._run(profile, budget_config, token, trace_id)
            result.issues = self._with_advisories(profile, result.issues)

        self.trace_sink.record("pipeline_end", {
            "trace_id": trace_id,
            "status": result.status.value,
            "attempts": result.attempts,
            "confidence": round(result.confidence, 3),
            "error_stage": result.error_stage,
            "duration_ms": int((time.time() - start) * 1000),
        })
        return result

    async def _run(
        self,
        profile: BusinessContextProfile,
        budget_config: Optional[BudgetConfig],
        token: Optional[CancellationToken],
        trace_id: str,
    ) -> PipelineResult:
        selection: Optional[SchemaSelection] = None
        stage = "budget"
        try:
            budget = TokenBudget.from_config(budget_config)
            self.assembler.reserve_base(profile, budget)

            stage = "retrieval"
            selection = await self.retrieval.retrieve(profile, budget, token=token)
            self.trace_sink.record("retrieval", {"trace_id": trace_id, "selection": selection.to_dict()})

            stage = "assembly"
            prompt_context = self.assembler.assemble(
                profile,
                selection,
                self.dictionary.business_rules,
                self.dictionary.examples,
                budget=budget,
            )
            self.trace_sink.record("assembly", {
                "trace_id": trace_id,
                "prompt_tokens": prompt_context.token_count,
                "ledger": budget.ledger,
                "trimmed": list(prompt_context.trimmed),
            })

            stage = "generation"
            ctx = SQLContext(
                model=self.model,
                sandbox=self.sandbox,
                business_rules=self.assembler.select_rules(self.dictionary.business_rules, selection),
                token=token,
                trace_sink=self.trace_sink,
                budget_config=budget_config,
                max_attempts=self.max_attempts,
            )
            final_state = await run_sql_workflow(ctx, profile, selection, prompt_context, trace_id=trace_id)
        except PipelineCancelled as e:
            e.with_context(stage, profile, selection)
            logger.warning(f"Pipeline cancelled during {e.stage}: {e.message}")
            return PipelineResult(
                status=PipelineStatus.CANCELLED,
                profile=profile,
                selection=selection,
                error_stage=e.stage,
                error=e,
                trace_id=trace_id,
            )
        except NoRelevantSchemaError as e:
            e.with_context(stage, profile, selection)
            logger.info(f"No relevant schema for '{profile.raw_question}'")
            return PipelineResult(
                status=PipelineStatus.NO_RELEVANT_SCHEMA,
                profile=profile,
                error_stage=e.stage,
                error=e,
                trace_id=trace_id,
            )
        except (TokenBudgetExceeded, ModelError) as e:
            e.with_context(stage, profile, selection)
            logger.error(f"❌ Pipeline failed: {e}")
            return PipelineResult(
                status=PipelineStatus.FAILED,
                profile=profile,
                selection=selection,
                error_stage=e.stage,
                error=e,
                trace_id=trace_id,
            )

        return self._result_from_state(profile, selection, prompt_context.token_count, final_state, trace_id)

    def _result_from_state(
        self,
        profile: BusinessContextProfile,
        selection: SchemaSelection,
        prompt_tokens: int,
        state: Dict[str, Any],
        trace_id: str,
    ) -> PipelineResult:
        results = tuple(state.get("validation_results") or ())
        overall = OverallResult(results)
        common = dict(
            profile=profile,
            selection=selection,
            prompt_tokens=prompt_tokens,
            attempts=state.get("attempt", 0),
            corrections=tuple(state.get("corrections") or ()),
            validation_results=results,
            last_sql=state.get("sql"),
            trace_id=trace_id,
        )

        if state.get("status") == AttemptStatus.VALID.value and overall.valid:
            return PipelineResult(
                status=PipelineStatus.SUCCEEDED,
                sql=state["sql"],
                confidence=profile.overall_confidence * overall.score,
                issues=overall.issues,
                **common,
            )

        blocking = overall.blocking_issues
        budget_error = state.get("budget_error")
        if budget_error is not None:
            error: PipelineError = budget_error.with_context("correction", profile, selection)
        elif any(i.layer == ValidationLayer.SECURITY for i in blocking):
            error = SecurityViolation(
                "Generated SQL was blocked by the security layer",
                issues=list(blocking),
                stage="validation",
                profile=profile,
                selection=selection,
            )
        else:
            error = ValidationFailure(
                state.get("failure_reason") or "SQL failed validation",
                issues=list(blocking),
                stage="validation",
                profile=profile,
                selection=selection,
            )
        logger.warning(f"{type(error).__name__}: {error}")
        return PipelineResult(
            status=PipelineStatus.FAILED,
            issues=overall.issues,
            error_stage=error.stage,
            error=error,
            **common,
        )

    @staticmethod
    def _with_advisories(profile: BusinessContextProfile, issues: Tuple[ValidationIssue, ...]) -> Tuple[ValidationIssue, ...]:
        if profile.time_ambiguous and not any(i.code == AMBIGUOUS_TIME_CODE for i in issues):
            return tuple(issues) + (ambiguous_time_issue(profile),)
        return tuple(issues)
