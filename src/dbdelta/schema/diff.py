"""
Schema diff engine.

Computes the structural delta between a current and an ideal snapshot as a
list of operations. Pure and deterministic: every keyed collection is
iterated in sorted key order, so input ordering never changes the output.
"""

import logging
from typing import Any, Dict, List, Mapping, Sequence, Tuple, TypeVar

from .operations import (
    AddColumnOperation,
    AlterColumnOperation,
    CreateForeignKeyConstraintOperation,
    CreateIndexOperation,
    CreatePrimaryKeyConstraintOperation,
    CreateTableOperation,
    CreateUniqueConstraintOperation,
    DropColumnOperation,
    DropForeignKeyConstraintOperation,
    DropIndexOperation,
    DropPrimaryKeyConstraintOperation,
    DropTableOperation,
    DropUniqueConstraintOperation,
    SchemaDiff,
)
from .snapshot import (
    ForeignKeyConstraint,
    IndexDefinition,
    PrimaryKeyConstraint,
    SchemaSnapshot,
    TableSnapshot,
    UniqueConstraint,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _keyed(items: Sequence[T]) -> Dict[Tuple[str, str], T]:
    return {item.key: item for item in items}


def diff_schema(current: SchemaSnapshot, ideal: SchemaSnapshot) -> SchemaDiff:
    """
    Diff two snapshots.

    Categories are computed independently and concatenated in the order
    tables, indexes, primary keys, unique constraints, foreign keys. The
    result is not yet consolidated or sorted.
    """
    operations: List[Any] = []
    operations.extend(diff_tables(current.tables, ideal.tables))
    operations.extend(diff_indexes(current.indexes, ideal.indexes))
    operations.extend(
        diff_primary_keys(current.primary_key_constraints, ideal.primary_key_constraints)
    )
    operations.extend(
        diff_unique_constraints(current.unique_constraints, ideal.unique_constraints)
    )
    operations.extend(
        diff_foreign_keys(current.foreign_key_constraints, ideal.foreign_key_constraints)
    )

    logger.debug(f"Computed {len(operations)} operations")
    return SchemaDiff(operations=operations)


def diff_tables(
    current: Sequence[TableSnapshot], ideal: Sequence[TableSnapshot]
) -> List[Any]:
    """Table set difference; matched tables are diffed column by column."""
    current_by_name = {table.name: table for table in current}
    ideal_by_name = {table.name: table for table in ideal}
    operations: List[Any] = []

    for name in sorted(ideal_by_name.keys() - current_by_name.keys()):
        operations.append(
            CreateTableOperation(table=name, columns=dict(ideal_by_name[name].columns))
        )

    for name in sorted(current_by_name.keys() - ideal_by_name.keys()):
        operations.append(DropTableOperation(table=name))

    for name in sorted(current_by_name.keys() & ideal_by_name.keys()):
        operations.extend(
            diff_columns(name, current_by_name[name].columns, ideal_by_name[name].columns)
        )

    return operations


def diff_columns(
    table: str, current: Mapping[str, Any], ideal: Mapping[str, Any]
) -> List[Any]:
    """
    Column set difference for one table.

    Equality covers type, not_null, primary_key and unique only. Default
    expressions are not compared.
    """
    operations: List[Any] = []

    for column in sorted(ideal.keys() - current.keys()):
        operations.append(
            AddColumnOperation(table=table, column=column, attributes=ideal[column])
        )

    for column in sorted(current.keys() - ideal.keys()):
        operations.append(
            DropColumnOperation(table=table, column=column, attributes=current[column])
        )

    for column in sorted(current.keys() & ideal.keys()):
        before, after = current[column], ideal[column]
        if before.comparison_key != after.comparison_key:
            operations.append(
                AlterColumnOperation(table=table, column=column, before=before, after=after)
            )

    return operations


def diff_indexes(
    current: Sequence[IndexDefinition], ideal: Sequence[IndexDefinition]
) -> List[Any]:
    """Any change to an index's columns or uniqueness is a drop then create."""
    current_by_key = _keyed(current)
    ideal_by_key = _keyed(ideal)
    operations: List[Any] = []

    def create(index: IndexDefinition) -> CreateIndexOperation:
        return CreateIndexOperation(
            table=index.table, name=index.name, columns=index.columns, unique=index.unique
        )

    for key in sorted(ideal_by_key.keys() - current_by_key.keys()):
        operations.append(create(ideal_by_key[key]))

    for key in sorted(current_by_key.keys() - ideal_by_key.keys()):
        operations.append(DropIndexOperation(table=key[0], name=key[1]))

    for key in sorted(current_by_key.keys() & ideal_by_key.keys()):
        before, after = current_by_key[key], ideal_by_key[key]
        if before.columns != after.columns or before.unique != after.unique:
            operations.append(DropIndexOperation(table=key[0], name=key[1]))
            operations.append(create(after))

    return operations


def diff_primary_keys(
    current: Sequence[PrimaryKeyConstraint], ideal: Sequence[PrimaryKeyConstraint]
) -> List[Any]:
    current_by_key = _keyed(current)
    ideal_by_key = _keyed(ideal)
    operations: List[Any] = []

    for key in sorted(ideal_by_key.keys() - current_by_key.keys()):
        constraint = ideal_by_key[key]
        operations.append(
            CreatePrimaryKeyConstraintOperation(
                table=constraint.table, name=constraint.name, columns=constraint.columns
            )
        )

    for key in sorted(current_by_key.keys() - ideal_by_key.keys()):
        operations.append(DropPrimaryKeyConstraintOperation(table=key[0], name=key[1]))

    for key in sorted(current_by_key.keys() & ideal_by_key.keys()):
        after = ideal_by_key[key]
        if current_by_key[key].columns != after.columns:
            operations.append(DropPrimaryKeyConstraintOperation(table=key[0], name=key[1]))
            operations.append(
                CreatePrimaryKeyConstraintOperation(
                    table=after.table, name=after.name, columns=after.columns
                )
            )

    return operations


def diff_unique_constraints(
    current: Sequence[UniqueConstraint], ideal: Sequence[UniqueConstraint]
) -> List[Any]:
    current_by_key = _keyed(current)
    ideal_by_key = _keyed(ideal)
    operations: List[Any] = []

    for key in sorted(ideal_by_key.keys() - current_by_key.keys()):
        constraint = ideal_by_key[key]
        operations.append(
            CreateUniqueConstraintOperation(
                table=constraint.table, name=constraint.name, columns=constraint.columns
            )
        )

    for key in sorted(current_by_key.keys() - ideal_by_key.keys()):
        operations.append(DropUniqueConstraintOperation(table=key[0], name=key[1]))

    for key in sorted(current_by_key.keys() & ideal_by_key.keys()):
        after = ideal_by_key[key]
        if current_by_key[key].columns != after.columns:
            operations.append(DropUniqueConstraintOperation(table=key[0], name=key[1]))
            operations.append(
                CreateUniqueConstraintOperation(
                    table=after.table, name=after.name, columns=after.columns
                )
            )

    return operations


def _foreign_key_signature(constraint: ForeignKeyConstraint) -> Tuple[Any, ...]:
    return (
        constraint.columns,
        constraint.referenced_table,
        constraint.referenced_columns,
        constraint.on_delete,
        constraint.on_update,
    )


def _create_foreign_key(
    constraint: ForeignKeyConstraint,
) -> CreateForeignKeyConstraintOperation:
    return CreateForeignKeyConstraintOperation(
        table=constraint.table,
        name=constraint.name,
        columns=constraint.columns,
        referenced_table=constraint.referenced_table,
        referenced_columns=constraint.referenced_columns,
        on_delete=constraint.on_delete,
        on_update=constraint.on_update,
    )


def diff_foreign_keys(
    current: Sequence[ForeignKeyConstraint], ideal: Sequence[ForeignKeyConstraint]
) -> List[Any]:
    """Foreign keys are always standalone operations."""
    current_by_key = _keyed(current)
    ideal_by_key = _keyed(ideal)
    operations: List[Any] = []

    for key in sorted(ideal_by_key.keys() - current_by_key.keys()):
        operations.append(_create_foreign_key(ideal_by_key[key]))

    for key in sorted(current_by_key.keys() - ideal_by_key.keys()):
        operations.append(DropForeignKeyConstraintOperation(table=key[0], name=key[1]))

    for key in sorted(current_by_key.keys() & ideal_by_key.keys()):
        after = ideal_by_key[key]
        if _foreign_key_signature(current_by_key[key]) != _foreign_key_signature(after):
            operations.append(DropForeignKeyConstraintOperation(table=key[0], name=key[1]))
            operations.append(_create_foreign_key(after))

    return operations
