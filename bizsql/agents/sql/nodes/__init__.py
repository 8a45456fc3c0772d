"""
SQL workflow nodes
"""

from bizsql.agents.sql.nodes.generate import generate_sql_node
from bizsql.agents.sql.nodes.validate import validate_sql_node
from bizsql.agents.sql.nodes.correct import correct_sql_node
from bizsql.agents.sql.nodes.finalize import finalize_node

__all__ = [
    "generate_sql_node",
    "validate_sql_node",
    "correct_sql_node",
    "finalize_node",
]
