"""
Operation consolidation.

Folds primary key and unique constraint creation into a create_table for
the same table, so the constraints are declared inline. Foreign keys are
never folded: their targets may not exist until later in the plan.
"""

import logging
from typing import Any, Dict, List, Sequence, Set, Tuple

from ..exceptions import OperationValidationError
from .operations import (
    CreateTableWithConstraintsOperation,
    InlineConstraint,
    OperationType,
    TableConstraints,
)


logger = logging.getLogger(__name__)


def consolidate(operations: Sequence[Any]) -> List[Any]:
    """
    Merge inlineable constraint operations into their create_table.

    The merged operation takes the create_table's position; all other
    operations keep their relative order.

    Raises:
        OperationValidationError: if one new table receives two primary keys.
    """
    created_tables = {
        op.table for op in operations if op.type == OperationType.CREATE_TABLE
    }
    primary_keys: Dict[str, InlineConstraint] = {}
    uniques: Dict[str, List[InlineConstraint]] = {}
    folded: Set[int] = set()

    for position, op in enumerate(operations):
        if op.table not in created_tables:
            continue
        if op.type == OperationType.CREATE_PRIMARY_KEY_CONSTRAINT:
            if op.table in primary_keys:
                raise OperationValidationError(
                    f"Table {op.table} receives more than one primary key",
                    {
                        "table": op.table,
                        "constraints": [primary_keys[op.table].name, op.name],
                    },
                )
            primary_keys[op.table] = InlineConstraint(name=op.name, columns=op.columns)
            folded.add(position)
        elif op.type == OperationType.CREATE_UNIQUE_CONSTRAINT:
            uniques.setdefault(op.table, []).append(
                InlineConstraint(name=op.name, columns=op.columns)
            )
            folded.add(position)

    result: List[Any] = []
    for position, op in enumerate(operations):
        if position in folded:
            continue
        if op.type == OperationType.CREATE_TABLE and (
            op.table in primary_keys or op.table in uniques
        ):
            result.append(
                CreateTableWithConstraintsOperation(
                    table=op.table,
                    columns=op.columns,
                    constraints=TableConstraints(
                        primary_key=primary_keys.get(op.table),
                        unique=tuple(uniques.get(op.table, [])),
                    ),
                )
            )
        else:
            result.append(op)

    if folded:
        logger.debug(f"Folded {len(folded)} constraint operations into create_table")
    return result


def filter_operations_for_dropped_tables(operations: Sequence[Any]) -> List[Any]:
    """Remove operations on tables that the same list drops."""
    dropped = {op.table for op in operations if op.type == OperationType.DROP_TABLE}
    return [
        op
        for op in operations
        if op.type == OperationType.DROP_TABLE or op.table not in dropped
    ]


def filter_redundant_drop_index_operations(operations: Sequence[Any]) -> List[Any]:
    """
    Remove a drop_index that names a primary key or unique constraint being
    dropped in the same list; dropping the constraint drops its index.
    """
    dropped_constraints: Set[Tuple[str, str]] = {
        (op.table, op.name)
        for op in operations
        if op.type
        in (
            OperationType.DROP_PRIMARY_KEY_CONSTRAINT,
            OperationType.DROP_UNIQUE_CONSTRAINT,
        )
    }
    return [
        op
        for op in operations
        if not (
            op.type == OperationType.DROP_INDEX
            and (op.table, op.name) in dropped_constraints
        )
    ]

