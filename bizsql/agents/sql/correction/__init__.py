"""
Correction support - normalized database errors and correction prompts
"""

from bizsql.agents.sql.correction.error_parser import normalize_error
from bizsql.agents.sql.correction.error_types import NormalizedError, SQLErrorType
from bizsql.agents.sql.correction.prompt import build_correction_prompt, format_issue

__all__ = ["build_correction_prompt", "format_issue", "normalize_error", "NormalizedError", "SQLErrorType"]
