"""
Live database introspection into a catalog snapshot.

Reads tables, columns, primary keys and foreign keys through SQLAlchemy's
inspector and merges the curated business metadata on top. The result is a
plain dict in the snapshot format so it can be written to
``artifacts/catalog_snapshot.json`` and versioned.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy import inspect
from sqlalchemy.engine import Engine


def introspect_catalog(
    engine: Engine,
    schema_name: Optional[str] = None,
    business_metadata: Optional[Dict[str, Any]] = None,
    version: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build a catalog snapshot dict from a live database.

    Args:
        engine: SQLAlchemy engine (read access is enough)
        schema_name: Schema to introspect (default schema when None)
        business_metadata: Curated descriptions keyed by table name
        version: Snapshot version label (UTC timestamp when None)
    """
    inspector = inspect(engine)
    curated = business_metadata or {}
    tables = []
    foreign_keys = []

    table_names = sorted(inspector.get_table_names(schema=schema_name))
    logger.info(f"Introspecting {len(table_names)} tables (schema={schema_name or 'default'})")

    for table_name in table_names:
        meta = curated.get(table_name, {})
        column_meta = meta.get("columns", {})
        pk = inspector.get_pk_constraint(table_name, schema=schema_name) or {}
        pk_columns = set(pk.get("constrained_columns") or [])
        fks = inspector.get_foreign_keys(table_name, schema=schema_name)
        fk_columns = {col for fk in fks for col in fk.get("constrained_columns", [])}

        columns = []
        for column in inspector.get_columns(table_name, schema=schema_name):
            name = column["name"]
            curated_column = column_meta.get(name, {})
            columns.append({
                "name": name,
                "type": str(column.get("type", "")),
                "is_key": name in pk_columns or name in fk_columns,
                "business_name": curated_column.get("business_name", ""),
                "meaning": curated_column.get("meaning", column.get("comment") or ""),
                "concept": curated_column.get("concept"),
                "common": bool(curated_column.get("common", False)),
            })

        for fk in fks:
            referred = fk.get("referred_table")
            for local, remote in zip(fk.get("constrained_columns", []), fk.get("referred_columns", [])):
                foreign_keys.append({
                    "from_table": table_name,
                    "from_column": local,
                    "to_table": referred,
                    "to_column": remote,
                })

        tables.append({
            "name": table_name,
            "schema": schema_name or meta.get("schema", "dbo"),
            "business_name": meta.get("business_name", ""),
            "purpose": meta.get("purpose", ""),
            "domains": meta.get("domains", []),
            "columns": columns,
        })

    snapshot_version = version or datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    logger.info(f"Catalog snapshot {snapshot_version}: {len(tables)} tables, {len(foreign_keys)} foreign keys")
    return {"version": snapshot_version, "tables": tables, "foreign_keys": foreign_keys}
