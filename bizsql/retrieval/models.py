"""
Schema retrieval data models
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

from bizsql.retrieval.tokens import estimate_tokens
from bizsql.sql.catalog.models import FKRelationship


class RetrievalStrategy(Enum):
    SEMANTIC = "semantic"
    DOMAIN = "domain"
    ENTITY = "entity"
    GLOSSARY = "glossary"


@dataclass(frozen=True)
class ColumnCandidate:
    column_name: str
    business_meaning: str = ""
    is_key: bool = False
    relevance_score: float = 0.0
    data_type: str = ""

    def render(self) -> str:
        flags = " [key]" if self.is_key else ""
        type_part = f" ({self.data_type})" if self.data_type else ""
        meaning = f": {self.business_meaning}" if self.business_meaning else ""
        return f"  - {self.column_name}{type_part}{flags}{meaning}"


@dataclass(frozen=True)
class TableCandidate:
    table_name: str
    schema_name: str = "dbo"
    relevance_score: float = 0.0
    matched_by: FrozenSet[str] = field(default_factory=frozenset)
    business_purpose: str = ""
    columns: Tuple[ColumnCandidate, ...] = ()
    via_bridge: bool = False  # Added only to join two selected tables

    def render(self) -> str:
        header = f"Table: {self.table_name}"
        if self.business_purpose:
            header += f" -- {self.business_purpose}"
        return "\n".join([header] + [c.render() for c in self.columns])


@dataclass(frozen=True)
class SchemaSelection:
    """
    Final bounded schema context for one request.

    ``estimated_tokens`` is the size of the schema plus relationship
    sections exactly as the prompt renders them.
    """
    tables: Tuple[TableCandidate, ...]
    relationships: Tuple[FKRelationship, ...] = ()
    estimated_tokens: int = 0
    catalog_version: str = ""

    @property
    def table_names(self) -> List[str]:
        return [t.table_name for t in self.tables]

    def get_table(self, name: str) -> Optional[TableCandidate]:
        lowered = name.lower()
        for table in self.tables:
            if table.table_name.lower() == lowered:
                return table
        return None

    def has_table(self, name: str) -> bool:
        return self.get_table(name) is not None

    def has_column(self, table: str, column: str) -> bool:
        candidate = self.get_table(table)
        if candidate is None:
            return False
        lowered = column.lower()
        return any(c.column_name.lower() == lowered for c in candidate.columns)

    def render_schema(self) -> str:
        return render_tables(self.tables)

    def render_relationships(self) -> str:
        return render_relationships(self.relationships)

    def to_dict(self):
        return {
            "tables": [
                {
                    "name": t.table_name,
                    "score": round(t.relevance_score, 3),
                    "matched_by": sorted(t.matched_by),
                    "columns": [c.column_name for c in t.columns],
                }
                for t in self.tables
            ],
            "relationships": [r.render() for r in self.relationships],
            "estimated_tokens": self.estimated_tokens,
            "catalog_version": self.catalog_version,
        }


def render_tables(tables) -> str:
    return "\n\n".join(t.render() for t in tables)


def render_relationships(relationships) -> str:
    return "\n".join(r.render() for r in relationships)


def estimate_selection_tokens(tables, relationships) -> int:
    return estimate_tokens(render_tables(tables)) + estimate_tokens(render_relationships(relationships))
