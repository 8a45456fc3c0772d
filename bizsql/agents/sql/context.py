"""
SQL agent context - dependencies for workflow nodes
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from bizsql.config.settings import settings
from bizsql.domain.ontology.models import BusinessRule
from bizsql.llm.client import ModelClient
from bizsql.retrieval.tokens import BudgetConfig
from bizsql.sql.execution.dry_run import DryRunSandbox
from bizsql.utils.cancellation import CancellationToken


@dataclass
class SQLContext:
    """Collaborators and limits for one workflow run"""

    model: ModelClient
    sandbox: Optional[DryRunSandbox] = None
    business_rules: Sequence[BusinessRule] = ()
    token: Optional[CancellationToken] = None
    trace_sink: Optional[Any] = None  # TraceSink
    budget_config: Optional[BudgetConfig] = None  # Ceiling for correction requests
    dialect: str = field(default_factory=lambda: settings.sql_dialect)
    max_attempts: int = field(default_factory=lambda: settings.sql_correction_max_attempts)
    max_output_tokens: int = field(default_factory=lambda: settings.max_output_tokens)
    dry_run_timeout: float = field(default_factory=lambda: settings.dry_run_timeout_seconds)
    dry_run_max_rows: int = field(default_factory=lambda: settings.dry_run_max_rows)
