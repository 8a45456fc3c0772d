"""
Schema catalog - versioned snapshot of tables, columns and foreign keys
"""

from bizsql.sql.catalog.models import ColumnMeta, FKRelationship, TableMeta
from bizsql.sql.catalog.snapshot import SchemaCatalog, SnapshotCatalog

__all__ = [
    "ColumnMeta",
    "FKRelationship",
    "TableMeta",
    "SchemaCatalog",
    "SnapshotCatalog",
]
