"""
Shared validation context.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlglot import exp

from bizsql.domain.context.models import BusinessContextProfile
from bizsql.domain.ontology.models import BusinessRule
from bizsql.retrieval.models import SchemaSelection
from bizsql.sql.execution.dry_run import DryRunSandbox
from bizsql.utils.cancellation import CancellationToken

_STRING_LITERAL = re.compile(r"'(?:[^'\\]|\\.|'')*'|\"(?:[^\"\\]|\\.)*\"")


def mask_literals(sql: str) -> str:
    """Replace quoted literals with '' so keyword checks never match inside strings."""
    return _STRING_LITERAL.sub("''", sql)


@dataclass
class ValidationContext:
    """Everything a layer may read. ``ast`` is None until the SQL parses."""
    sql: str
    profile: BusinessContextProfile
    selection: SchemaSelection
    business_rules: Sequence[BusinessRule] = ()
    sandbox: Optional[DryRunSandbox] = None
    dialect: str = "mysql"
    dry_run_timeout: float = 5.0
    dry_run_max_rows: int = 5_000_000
    token: Optional[CancellationToken] = None
    ast: Optional[exp.Expression] = None

    @property
    def masked_sql(self) -> str:
        return mask_literals(self.sql)
