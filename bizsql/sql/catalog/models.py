"""
Schema catalog data models
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class ColumnMeta:
    """Column metadata merged with its curated business description"""
    name: str
    data_type: str = ""
    business_name: str = ""
    business_meaning: str = ""
    is_key: bool = False
    concept: Optional[str] = None  # e.g. "country", "currency"; guards entity linking
    is_common: bool = False  # Commonly used for aggregation or filtering


@dataclass(frozen=True)
class FKRelationship:
    """Declared foreign key: from_table.from_column -> to_table.to_column"""
    from_table: str
    from_column: str
    to_table: str
    to_column: str

    def involves(self, table: str) -> bool:
        return table in (self.from_table, self.to_table)

    def other(self, table: str) -> str:
        return self.to_table if table == self.from_table else self.from_table

    def render(self) -> str:
        return f"{self.from_table}.{self.from_column} = {self.to_table}.{self.to_column}"


@dataclass(frozen=True)
class TableMeta:
    """Table metadata merged with its curated business description"""
    name: str
    schema: str = "dbo"
    business_name: str = ""
    business_purpose: str = ""
    domains: Tuple[str, ...] = ()
    columns: Tuple[ColumnMeta, ...] = ()

    def get_column(self, name: str) -> Optional[ColumnMeta]:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    def describe(self) -> str:
        """Free text used for semantic similarity against the question."""
        column_names = ", ".join(c.business_name or c.name for c in self.columns)
        return f"{self.business_name or self.name}. {self.business_purpose} Columns: {column_names}"
