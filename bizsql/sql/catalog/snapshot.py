"""
Schema catalog snapshot loading

Loads a versioned, read-only catalog snapshot from JSON. Relationship table
names are normalized to the canonical keys from ``tables`` so mixed casing
(e.g. tbl_countries vs tbl_Countries) does not create duplicate nodes.
"""

from __future__ import annotations

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, Union

from loguru import logger

from bizsql.sql.catalog.models import ColumnMeta, FKRelationship, TableMeta

# Audit columns never describe a business relationship
AUDIT_COLUMNS = frozenset({"createdby", "updatedby", "createdat", "updatedat"})


class SchemaCatalog(Protocol):
    """Read-only schema catalog consumed by linking and retrieval."""

    version: str

    def list_tables(self, schema_name: Optional[str] = None) -> List[TableMeta]:
        ...

    def get_table(self, name: str) -> Optional[TableMeta]:
        ...

    def get_foreign_keys(self, table: str) -> List[FKRelationship]:
        ...

    def all_foreign_keys(self) -> List[FKRelationship]:
        ...


class SnapshotCatalog:
    """
    Immutable catalog snapshot.

    Concurrent requests may read it freely; nothing in the pipeline writes
    to it.
    """

    def __init__(self, tables: List[TableMeta], relationships: List[FKRelationship], version: str = "0"):
        self.version = str(version)
        self._tables: Mapping[str, TableMeta] = MappingProxyType({t.name: t for t in tables})
        self._by_lower: Mapping[str, str] = MappingProxyType({t.name.lower(): t.name for t in tables})
        self._relationships: Tuple[FKRelationship, ...] = tuple(relationships)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotCatalog":
        tables = []
        for raw in data.get("tables", []):
            columns = tuple(
                ColumnMeta(
                    name=c["name"],
                    data_type=c.get("type", ""),
                    business_name=c.get("business_name", ""),
                    business_meaning=c.get("meaning", ""),
                    is_key=bool(c.get("is_key", False)),
                    concept=c.get("concept"),
                    is_common=bool(c.get("common", False)),
                )
                for c in raw.get("columns", [])
            )
            tables.append(
                TableMeta(
                    name=raw["name"],
                    schema=raw.get("schema", "dbo"),
                    business_name=raw.get("business_name", ""),
                    business_purpose=raw.get("purpose", ""),
                    domains=tuple(raw.get("domains", [])),
                    columns=columns,
                )
            )

        canonical_by_lower = {t.name.lower(): t.name for t in tables}

        def canonical_table(name: str) -> str:
            return canonical_by_lower.get(name.lower(), name)

        original_count = len(data.get("foreign_keys", []))
        relationships = [
            FKRelationship(
                from_table=canonical_table(r["from_table"]),
                from_column=r["from_column"],
                to_table=canonical_table(r["to_table"]),
                to_column=r["to_column"],
            )
            for r in data.get("foreign_keys", [])
            if r["from_column"].lower() not in AUDIT_COLUMNS
        ]

        catalog = cls(tables, relationships, version=data.get("version", "0"))
        logger.info(
            f"Loaded catalog snapshot v{catalog.version}: {len(tables)} tables, {len(relationships)} foreign keys "
            f"(filtered {original_count - len(relationships)} audit column relationships)"
        )
        return catalog

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SnapshotCatalog":
        with open(str(path), "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def list_tables(self, schema_name: Optional[str] = None) -> List[TableMeta]:
        tables = sorted(self._tables.values(), key=lambda t: t.name)
        if schema_name is None:
            return tables
        return [t for t in tables if t.schema.lower() == schema_name.lower()]

    def get_table(self, name: str) -> Optional[TableMeta]:
        canonical = self._by_lower.get(name.lower())
        return self._tables.get(canonical) if canonical else None

    def has_table(self, name: str) -> bool:
        return name.lower() in self._by_lower

    def get_foreign_keys(self, table: str) -> List[FKRelationship]:
        canonical = self._by_lower.get(table.lower(), table)
        return [r for r in self._relationships if r.involves(canonical)]

    def all_foreign_keys(self) -> List[FKRelationship]:
        return list(self._relationships)
