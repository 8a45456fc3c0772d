"""
SQL AST utilities using sqlglot for deterministic query analysis.

This module provides wrapper functions around sqlglot to:
- Parse SQL into an Abstract Syntax Tree (AST)
- Extract referenced tables, columns, aliases and CTE names
- Inspect aggregation, grouping, ordering, limits and literals

Validation layers work only with these helpers, never with raw regexes over
identifiers, so aliases and CTEs are resolved the same way everywhere.
"""

import re
from typing import Dict, List, Optional, Set, Tuple

import sqlglot
from loguru import logger
from sqlglot import exp

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def parse_sql(sql: str, dialect: str = "mysql") -> exp.Expression:
    """
    Parse a single SQL statement into a sqlglot AST.

    Args:
        sql: SQL query string
        dialect: SQL dialect (default: "mysql")

    Returns:
        sqlglot Expression (AST root)

    Raises:
        sqlglot.errors.ParseError: If SQL is invalid

    Example:
        >>> ast = parse_sql("SELECT id, name FROM users WHERE active = 1")
        >>> print(type(ast))
        <class 'sqlglot.expressions.Select'>
    """
    try:
        parsed = sqlglot.parse_one(sql, read=dialect)
        logger.debug(f"Parsed SQL into AST: {type(parsed).__name__}")
        return parsed
    except Exception as e:
        logger.error(f"Failed to parse SQL: {e}")
        raise


def parse_statements(sql: str, dialect: str = "mysql") -> List[exp.Expression]:
    """
    Parse every statement in ``sql``.

    Stacked statements ("SELECT 1; DROP TABLE x") come back as separate
    entries; empty statements are dropped.

    Raises:
        sqlglot.errors.ParseError: If any statement is invalid
    """
    statements = [s for s in sqlglot.parse(sql, read=dialect) if s is not None]
    logger.debug(f"Parsed {len(statements)} statement(s)")
    return statements


def is_read_only_query(ast: exp.Expression) -> bool:
    """True for SELECT / UNION / WITH ... SELECT trees."""
    return isinstance(ast, (exp.Select, exp.Union, exp.Intersect, exp.Except, exp.Subquery))


def get_select_expressions(ast: exp.Expression) -> List[exp.Expression]:
    """
    Extract SELECT expressions as AST nodes, with aliases unwrapped.

    Example:
        >>> ast = parse_sql("SELECT id, CONCAT(first, last) AS name FROM users")
        >>> [e.sql() for e in get_select_expressions(ast)]
        ['id', 'CONCAT(first, last)']
    """
    if not isinstance(ast, exp.Select):
        logger.warning(f"Expected Select expression, got {type(ast).__name__}")
        return []

    expressions = []
    for select_expr in ast.expressions:
        # If it's an Alias (e.g., "col AS alias"), get the underlying expression
        if isinstance(select_expr, exp.Alias):
            expressions.append(select_expr.this)
        else:
            expressions.append(select_expr)

    logger.debug(f"Extracted {len(expressions)} SELECT expressions")
    return expressions


def get_group_by_expressions(ast: exp.Expression) -> List[exp.Expression]:
    """
    Extract GROUP BY expressions of the outermost SELECT.

    Example:
        >>> ast = parse_sql("SELECT dept, COUNT(*) FROM emp GROUP BY dept")
        >>> [e.sql() for e in get_group_by_expressions(ast)]
        ['dept']
    """
    if not isinstance(ast, exp.Select):
        logger.warning(f"Expected Select expression, got {type(ast).__name__}")
        return []

    group_by = ast.args.get("group")
    if not group_by:
        logger.debug("No GROUP BY clause found")
        return []

    expressions = list(group_by.expressions)
    logger.debug(f"Extracted {len(expressions)} GROUP BY expressions")
    return expressions


def get_cte_names(ast: exp.Expression) -> Set[str]:
    """Lower-cased names of every CTE defined in the query."""
    return {cte.alias_or_name.lower() for cte in ast.find_all(exp.CTE) if cte.alias_or_name}


def get_table_references(ast: exp.Expression) -> Dict[str, str]:
    """
    Map each physical table alias (and bare name) to its table name.

    CTE references are excluded. Keys are lower-cased; values keep the
    spelling used in the SQL.

    Example:
        >>> refs = get_table_references(parse_sql("SELECT * FROM orders o JOIN users ON o.uid = users.id"))
        >>> sorted(refs.items())
        [('o', 'orders'), ('orders', 'orders'), ('users', 'users')]
    """
    ctes = get_cte_names(ast)
    references: Dict[str, str] = {}
    for table in ast.find_all(exp.Table):
        name = table.name
        if not name or name.lower() in ctes:
            continue
        references[name.lower()] = name
        if table.alias:
            references[table.alias.lower()] = name
    return references


def get_table_names(ast: exp.Expression) -> List[str]:
    """Distinct physical table names in first-seen order (CTEs excluded)."""
    seen: Dict[str, str] = {}
    ctes = get_cte_names(ast)
    for table in ast.find_all(exp.Table):
        if table.name and table.name.lower() not in ctes:
            seen.setdefault(table.name.lower(), table.name)
    return list(seen.values())


def get_derived_aliases(ast: exp.Expression) -> Set[str]:
    """Lower-cased aliases of subqueries and CTEs (relations with no physical table)."""
    aliases = set(get_cte_names(ast))
    for subquery in ast.find_all(exp.Subquery):
        if subquery.alias:
            aliases.add(subquery.alias.lower())
    return aliases


def get_projection_aliases(ast: exp.Expression) -> Set[str]:
    """Lower-cased output column aliases from every SELECT in the tree."""
    return {alias.alias.lower() for alias in ast.find_all(exp.Alias) if alias.alias}


def get_column_references(ast: exp.Expression) -> List[Tuple[Optional[str], str]]:
    """
    Every column reference as ``(qualifier, column)``.

    ``qualifier`` is the table or alias prefix when present, else None.
    ``t.*`` and ``*`` are not column references.

    Example:
        >>> get_column_references(parse_sql("SELECT o.total, status FROM orders o"))
        [('o', 'total'), (None, 'status')]
    """
    references = []
    for column in ast.find_all(exp.Column):
        if isinstance(column.this, exp.Star):
            continue
        name = column.name
        if not name:
            continue
        references.append((column.table or None, name))
    return references


def has_aggregate(ast: exp.Expression) -> bool:
    return ast.find(exp.AggFunc) is not None


def get_aggregated_columns(ast: exp.Expression) -> Set[str]:
    """Lower-cased names of columns that appear inside an aggregate function."""
    columns = set()
    for agg in ast.find_all(exp.AggFunc):
        for column in agg.find_all(exp.Column):
            if column.name:
                columns.add(column.name.lower())
    return columns


def get_order_by(ast: exp.Expression) -> List[Tuple[exp.Expression, bool]]:
    """ORDER BY terms of the outermost query as ``(expression, descending)``."""
    order = ast.args.get("order")
    if not order:
        return []
    return [(ordered.this, bool(ordered.args.get("desc"))) for ordered in order.expressions]


def get_limit(ast: exp.Expression) -> Optional[int]:
    """Numeric LIMIT of the outermost query, or None."""
    limit = ast.args.get("limit")
    if limit is None:
        return None
    value = limit.args.get("expression") or limit.args.get("this")
    if isinstance(value, exp.Literal) and not value.is_string:
        try:
            return int(value.this)
        except ValueError:
            return None
    return None


def get_string_literals(ast: exp.Expression) -> List[str]:
    return [lit.this for lit in ast.find_all(exp.Literal) if lit.is_string]


def get_date_literals(ast: exp.Expression) -> List[str]:
    """String literals that start with an ISO date (YYYY-MM-DD), truncated to the date."""
    return [value[:10] for value in get_string_literals(ast) if _ISO_DATE.match(value)]


def get_filtered_columns(ast: exp.Expression) -> Set[str]:
    """Lower-cased names of columns referenced inside any WHERE or HAVING clause."""
    columns = set()
    for clause in list(ast.find_all(exp.Where)) + list(ast.find_all(exp.Having)):
        for column in clause.find_all(exp.Column):
            if column.name:
                columns.add(column.name.lower())
    return columns


def get_filter_literals(ast: exp.Expression) -> Set[str]:
    """Lower-cased string literals used inside WHERE or HAVING clauses."""
    literals = set()
    for clause in list(ast.find_all(exp.Where)) + list(ast.find_all(exp.Having)):
        for literal in clause.find_all(exp.Literal):
            if literal.is_string:
                literals.add(literal.this.lower())
    return literals
