"""
Dry-run execution sandbox
"""

from bizsql.sql.execution.dry_run import DryRunSandbox, ExplainResult, SQLAlchemySandbox

__all__ = ["DryRunSandbox", "ExplainResult", "SQLAlchemySandbox"]
