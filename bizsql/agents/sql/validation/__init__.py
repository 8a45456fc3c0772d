"""
SQL validation layers
"""

from bizsql.agents.sql.validation.base import ValidationContext, mask_literals
from bizsql.agents.sql.validation.validator import LAYERS, validate_sql

__all__ = ["LAYERS", "ValidationContext", "mask_literals", "validate_sql"]
