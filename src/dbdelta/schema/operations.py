"""
Schema change operations for dbdelta.

A closed set of atomic structural changes. Operations are frozen pydantic
models discriminated on ``type`` so a plan serializes to stable JSON for
migration files and re-validates when loaded back.
"""

import logging
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import OperationValidationError
from .snapshot import ColumnDefinition, ReferentialAction, require_columns, require_name


logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Types of schema operations."""

    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    ALTER_COLUMN = "alter_column"
    CREATE_INDEX = "create_index"
    DROP_INDEX = "drop_index"
    CREATE_PRIMARY_KEY_CONSTRAINT = "create_primary_key_constraint"
    DROP_PRIMARY_KEY_CONSTRAINT = "drop_primary_key_constraint"
    CREATE_UNIQUE_CONSTRAINT = "create_unique_constraint"
    DROP_UNIQUE_CONSTRAINT = "drop_unique_constraint"
    CREATE_FOREIGN_KEY_CONSTRAINT = "create_foreign_key_constraint"
    DROP_FOREIGN_KEY_CONSTRAINT = "drop_foreign_key_constraint"
    CREATE_TABLE_WITH_CONSTRAINTS = "create_table_with_constraints"


class _TableOperation(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    table: str

    @field_validator("table")
    @classmethod
    def validate_table(cls, v: str) -> str:
        return require_name(v)


class _NamedOperation(_TableOperation):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return require_name(v)


class _ColumnListOperation(_NamedOperation):
    columns: Tuple[str, ...]

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return require_columns(v)


class _ColumnOperation(_TableOperation):
    column: str

    @field_validator("column")
    @classmethod
    def validate_column(cls, v: str) -> str:
        return require_name(v)


def _require_column_map(v: Dict[str, ColumnDefinition]) -> Dict[str, ColumnDefinition]:
    if not v:
        raise ValueError("a table needs at least one column")
    for name in v:
        require_name(name)
    return v


class CreateTableOperation(_TableOperation):
    type: Literal["create_table"] = "create_table"
    columns: Dict[str, ColumnDefinition]

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Dict[str, ColumnDefinition]) -> Dict[str, ColumnDefinition]:
        return _require_column_map(v)


class DropTableOperation(_TableOperation):
    type: Literal["drop_table"] = "drop_table"


class AddColumnOperation(_ColumnOperation):
    type: Literal["add_column"] = "add_column"
    attributes: ColumnDefinition


class DropColumnOperation(_ColumnOperation):
    """Drops a column; ``attributes`` describes what is being removed."""

    type: Literal["drop_column"] = "drop_column"
    attributes: ColumnDefinition


class AlterColumnOperation(_ColumnOperation):
    """
    Changes a column definition.

    Both full definitions are carried so the renderer can choose between a
    minimal ALTER and a full column rewrite per dialect.
    """

    type: Literal["alter_column"] = "alter_column"
    before: ColumnDefinition
    after: ColumnDefinition


class CreateIndexOperation(_ColumnListOperation):
    type: Literal["create_index"] = "create_index"
    unique: bool = False


class DropIndexOperation(_NamedOperation):
    type: Literal["drop_index"] = "drop_index"


class CreatePrimaryKeyConstraintOperation(_ColumnListOperation):
    type: Literal["create_primary_key_constraint"] = "create_primary_key_constraint"


class DropPrimaryKeyConstraintOperation(_NamedOperation):
    type: Literal["drop_primary_key_constraint"] = "drop_primary_key_constraint"


class CreateUniqueConstraintOperation(_ColumnListOperation):
    type: Literal["create_unique_constraint"] = "create_unique_constraint"


class DropUniqueConstraintOperation(_NamedOperation):
    type: Literal["drop_unique_constraint"] = "drop_unique_constraint"


class CreateForeignKeyConstraintOperation(_ColumnListOperation):
    type: Literal["create_foreign_key_constraint"] = "create_foreign_key_constraint"
    referenced_table: str
    referenced_columns: Tuple[str, ...]
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None

    @field_validator("referenced_table")
    @classmethod
    def validate_referenced_table(cls, v: str) -> str:
        return require_name(v)

    @field_validator("referenced_columns")
    @classmethod
    def validate_referenced_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return require_columns(v)


class DropForeignKeyConstraintOperation(_NamedOperation):
    type: Literal["drop_foreign_key_constraint"] = "drop_foreign_key_constraint"


class InlineConstraint(BaseModel):
    """A primary key or unique constraint declared inside CREATE TABLE."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    columns: Tuple[str, ...]

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return require_name(v)

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return require_columns(v)


class TableConstraints(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    primary_key: Optional[InlineConstraint] = None
    unique: Tuple[InlineConstraint, ...] = ()


class CreateTableWithConstraintsOperation(_TableOperation):
    """Produced only by the consolidator; never holds foreign keys."""

    type: Literal["create_table_with_constraints"] = "create_table_with_constraints"
    columns: Dict[str, ColumnDefinition]
    constraints: TableConstraints = Field(default_factory=TableConstraints)

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Dict[str, ColumnDefinition]) -> Dict[str, ColumnDefinition]:
        return _require_column_map(v)


Operation = Annotated[
    Union[
        CreateTableOperation,
        DropTableOperation,
        AddColumnOperation,
        DropColumnOperation,
        AlterColumnOperation,
        CreateIndexOperation,
        DropIndexOperation,
        CreatePrimaryKeyConstraintOperation,
        DropPrimaryKeyConstraintOperation,
        CreateUniqueConstraintOperation,
        DropUniqueConstraintOperation,
        CreateForeignKeyConstraintOperation,
        DropForeignKeyConstraintOperation,
        CreateTableWithConstraintsOperation,
    ],
    Field(discriminator="type"),
]

_OPERATION_LIST = TypeAdapter(List[Operation])


class SchemaDiff(BaseModel):
    """Output of the diff engine."""

    operations: List[Operation] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.operations


def operation_secondary_key(operation: Any) -> str:
    """Index/constraint name, or column name for column operations."""
    name = getattr(operation, "name", None)
    if name is not None:
        return name
    return getattr(operation, "column", None) or ""


def parse_operations(data: Sequence[Dict[str, Any]]) -> List[Any]:
    """Validate a JSON-compatible list back into operations."""
    try:
        return _OPERATION_LIST.validate_python(list(data))
    except PydanticValidationError as e:
        logger.error(f"Invalid operation list: {e.error_count()} error(s)")
        raise OperationValidationError(
            "Invalid operation list",
            {"errors": e.error_count()},
            e,
        ) from e


def dump_operations(operations: Sequence[Any]) -> List[Dict[str, Any]]:
    """Serialize operations to JSON-compatible dicts."""
    return _OPERATION_LIST.dump_python(list(operations), mode="json")


def _cols(columns: Sequence[str]) -> str:
    return ", ".join(columns)


def describe_operation(operation: Any) -> str:
    """Get a one-line human summary of an operation."""
    op_type = operation.type
    table = operation.table

    if op_type == OperationType.CREATE_TABLE:
        return f"create table {table} ({len(operation.columns)} columns)"
    if op_type == OperationType.CREATE_TABLE_WITH_CONSTRAINTS:
        parts = [f"create table {table} ({len(operation.columns)} columns"]
        if operation.constraints.primary_key:
            parts.append(f", primary key {operation.constraints.primary_key.name}")
        if operation.constraints.unique:
            parts.append(f", {len(operation.constraints.unique)} unique")
        return "".join(parts) + ")"
    if op_type == OperationType.DROP_TABLE:
        return f"drop table {table}"
    if op_type == OperationType.ADD_COLUMN:
        return f"add column {table}.{operation.column} {operation.attributes.type}"
    if op_type == OperationType.DROP_COLUMN:
        return f"drop column {table}.{operation.column}"
    if op_type == OperationType.ALTER_COLUMN:
        changed = [
            field
            for field in ("type", "not_null", "primary_key", "unique", "default_sql")
            if getattr(operation.before, field) != getattr(operation.after, field)
        ]
        return f"alter column {table}.{operation.column} ({', '.join(changed) or 'no change'})"
    if op_type == OperationType.CREATE_INDEX:
        kind = "unique index" if operation.unique else "index"
        return f"create {kind} {operation.name} on {table} ({_cols(operation.columns)})"
    if op_type == OperationType.DROP_INDEX:
        return f"drop index {operation.name} on {table}"
    if op_type == OperationType.CREATE_PRIMARY_KEY_CONSTRAINT:
        return f"add primary key {operation.name} on {table} ({_cols(operation.columns)})"
    if op_type == OperationType.DROP_PRIMARY_KEY_CONSTRAINT:
        return f"drop primary key {operation.name} on {table}"
    if op_type == OperationType.CREATE_UNIQUE_CONSTRAINT:
        return f"add unique {operation.name} on {table} ({_cols(operation.columns)})"
    if op_type == OperationType.DROP_UNIQUE_CONSTRAINT:
        return f"drop unique {operation.name} on {table}"
    if op_type == OperationType.CREATE_FOREIGN_KEY_CONSTRAINT:
        return (
            f"add foreign key {operation.name} on {table} ({_cols(operation.columns)}) "
            f"-> {operation.referenced_table} ({_cols(operation.referenced_columns)})"
        )
    if op_type == OperationType.DROP_FOREIGN_KEY_CONSTRAINT:
        return f"drop foreign key {operation.name} on {table}"

    raise OperationValidationError(f"Unknown operation type: {op_type}")
