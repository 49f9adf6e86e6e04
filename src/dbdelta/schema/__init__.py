"""Schema model, diffing and planning for dbdelta."""

from .consolidator import consolidate
from .diff import diff_schema
from .operations import SchemaDiff
from .snapshot import SchemaSnapshot
from .sorter import MigrationPlan, build_plan, sort_operations_by_dependency

__all__ = [
    "SchemaSnapshot",
    "SchemaDiff",
    "MigrationPlan",
    "diff_schema",
    "consolidate",
    "sort_operations_by_dependency",
    "build_plan",
]
