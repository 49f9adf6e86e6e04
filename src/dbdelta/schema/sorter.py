"""
Dependency-aware operation ordering.

A stable sort over a fixed priority per operation type rather than a
topological sort: drops before creates, tables before columns, columns
before indexes, foreign keys last.
"""

import logging
from typing import Any, Dict, List, Sequence, Tuple

from pydantic import BaseModel, Field

from .consolidator import (
    consolidate,
    filter_operations_for_dropped_tables,
    filter_redundant_drop_index_operations,
)
from .operations import Operation, OperationType, operation_secondary_key


logger = logging.getLogger(__name__)


OPERATION_PRIORITIES: Dict[str, int] = {
    OperationType.DROP_FOREIGN_KEY_CONSTRAINT.value: 0,
    OperationType.DROP_UNIQUE_CONSTRAINT.value: 1,
    OperationType.DROP_PRIMARY_KEY_CONSTRAINT.value: 2,
    OperationType.DROP_INDEX.value: 3,
    OperationType.DROP_COLUMN.value: 4,
    OperationType.DROP_TABLE.value: 5,
    OperationType.CREATE_TABLE.value: 6,
    OperationType.CREATE_TABLE_WITH_CONSTRAINTS.value: 6,
    OperationType.ADD_COLUMN.value: 7,
    OperationType.ALTER_COLUMN.value: 8,
    OperationType.CREATE_INDEX.value: 9,
    OperationType.CREATE_PRIMARY_KEY_CONSTRAINT.value: 10,
    OperationType.CREATE_UNIQUE_CONSTRAINT.value: 11,
    OperationType.CREATE_FOREIGN_KEY_CONSTRAINT.value: 12,
}


def operation_sort_key(operation: Any) -> Tuple[int, str, str]:
    """(priority, table, name or column)."""
    return (
        OPERATION_PRIORITIES[operation.type],
        operation.table,
        operation_secondary_key(operation),
    )


def sort_operations_by_dependency(operations: Sequence[Any]) -> List[Any]:
    """
    Order operations for safe execution.

    Never reorders across priority buckets. Within a bucket, ties break on
    table name then on the index/constraint or column name, so any
    permutation of the same operations sorts to the same order.
    """
    return sorted(operations, key=operation_sort_key)


class MigrationPlan(BaseModel):
    """The ordered, consolidated operation list."""

    operations: List[Operation] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def __len__(self) -> int:
        return len(self.operations)


def build_plan(operations: Sequence[Any]) -> MigrationPlan:
    """Filter, consolidate and sort a diff into an executable plan."""
    ops = filter_operations_for_dropped_tables(operations)
    ops = consolidate(ops)
    ops = filter_redundant_drop_index_operations(ops)
    ops = sort_operations_by_dependency(ops)

    logger.debug(f"Built plan with {len(ops)} operations from {len(operations)}")
    return MigrationPlan(operations=ops)
