"""
Dialect-neutral schema snapshot model for dbdelta.

Every introspection driver and the configuration loader produce these
models, so the diff engine never needs to know which dialect it is
looking at.
"""

import re
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..exceptions import UnknownTypeError


RESERVED_TABLE_PREFIX = "dbdelta_"

_TYPE_PATTERN = re.compile(r"^([^()]+?)\s*(?:(\([^)]*\))\s*(.*))?$")


class ReferentialAction(str, Enum):
    """Foreign key ON DELETE / ON UPDATE actions."""

    CASCADE = "cascade"
    SET_NULL = "set null"
    SET_DEFAULT = "set default"
    RESTRICT = "restrict"
    NO_ACTION = "no action"


def require_name(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("name must not be empty")
    return value


def require_columns(value: Tuple[str, ...]) -> Tuple[str, ...]:
    if not value:
        raise ValueError("column list must not be empty")
    if any(not column for column in value):
        raise ValueError("column names must not be empty")
    if len(set(value)) != len(value):
        raise ValueError(f"column list contains duplicates: {list(value)}")
    return value


class ColumnDefinition(BaseModel):
    """Attributes of a single column."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str
    not_null: bool = False
    primary_key: bool = False
    unique: bool = False
    default_sql: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("column type must not be empty")
        return v

    @property
    def comparison_key(self) -> Tuple[str, bool, bool, bool]:
        """Attributes that take part in column equality."""
        return (self.type, self.not_null, self.primary_key, self.unique)


class TableSnapshot(BaseModel):
    """A table and its columns."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    columns: Dict[str, ColumnDefinition] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return require_name(v)


class IndexDefinition(BaseModel):
    """An index; identity is (table, name) and column order is significant."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    table: str
    name: str
    columns: Tuple[str, ...]
    unique: bool = False

    @field_validator("table", "name")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return require_name(v)

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return require_columns(v)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.name)


class PrimaryKeyConstraint(BaseModel):
    """A primary key constraint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    table: str
    name: str
    columns: Tuple[str, ...]

    @field_validator("table", "name")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return require_name(v)

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return require_columns(v)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.name)


class UniqueConstraint(BaseModel):
    """A unique constraint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    table: str
    name: str
    columns: Tuple[str, ...]

    @field_validator("table", "name")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return require_name(v)

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return require_columns(v)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.name)


class ForeignKeyConstraint(BaseModel):
    """A foreign key constraint."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    table: str
    name: str
    columns: Tuple[str, ...]
    referenced_table: str
    referenced_columns: Tuple[str, ...]
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None

    @field_validator("table", "name", "referenced_table")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return require_name(v)

    @field_validator("columns", "referenced_columns")
    @classmethod
    def validate_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return require_columns(v)

    @model_validator(mode="after")
    def validate_column_counts(self) -> "ForeignKeyConstraint":
        if len(self.columns) != len(self.referenced_columns):
            raise ValueError(
                f"foreign key {self.name} maps {len(self.columns)} columns "
                f"to {len(self.referenced_columns)} referenced columns"
            )
        return self

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.name)


class SchemaSnapshot(BaseModel):
    """Point-in-time description of a schema's structure."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tables: Tuple[TableSnapshot, ...] = ()
    indexes: Tuple[IndexDefinition, ...] = ()
    primary_key_constraints: Tuple[PrimaryKeyConstraint, ...] = ()
    unique_constraints: Tuple[UniqueConstraint, ...] = ()
    foreign_key_constraints: Tuple[ForeignKeyConstraint, ...] = ()

    @model_validator(mode="after")
    def validate_identities(self) -> "SchemaSnapshot":
        names = [table.name for table in self.tables]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate table names: {duplicates}")

        pk_tables = [pk.table for pk in self.primary_key_constraints]
        multiple = sorted({t for t in pk_tables if pk_tables.count(t) > 1})
        if multiple:
            raise ValueError(f"more than one primary key on tables: {multiple}")

        for label, items in (
            ("index", self.indexes),
            ("unique constraint", self.unique_constraints),
            ("foreign key", self.foreign_key_constraints),
        ):
            keys = [item.key for item in items]
            repeated = sorted({k for k in keys if keys.count(k) > 1})
            if repeated:
                raise ValueError(f"duplicate {label} identities: {repeated}")
        return self

    def get_table(self, name: str) -> Optional[TableSnapshot]:
        """Get a table by name."""
        for table in self.tables:
            if table.name == name:
                return table
        return None

    @property
    def table_names(self) -> Tuple[str, ...]:
        return tuple(table.name for table in self.tables)

    def without_internal_tables(
        self, prefix: str = RESERVED_TABLE_PREFIX
    ) -> "SchemaSnapshot":
        """Drop the engine's own bookkeeping tables and everything on them."""

        def keep(table: str) -> bool:
            return not is_internal_table(table, prefix)

        return SchemaSnapshot(
            tables=tuple(t for t in self.tables if keep(t.name)),
            indexes=tuple(i for i in self.indexes if keep(i.table)),
            primary_key_constraints=tuple(
                c for c in self.primary_key_constraints if keep(c.table)
            ),
            unique_constraints=tuple(
                c for c in self.unique_constraints if keep(c.table)
            ),
            foreign_key_constraints=tuple(
                c for c in self.foreign_key_constraints if keep(c.table)
            ),
        )


def derive_column_flags(
    tables: Iterable[TableSnapshot],
    primary_keys: Iterable[PrimaryKeyConstraint],
    unique_constraints: Iterable[UniqueConstraint],
) -> Tuple[TableSnapshot, ...]:
    """
    Re-derive per-column flags from constraints.

    ``primary_key`` and ``unique`` are set only by single-column
    constraints. Every primary key column is NOT NULL.
    """
    pk_columns: Dict[str, Tuple[str, ...]] = {pk.table: pk.columns for pk in primary_keys}
    unique_columns = {
        (uc.table, uc.columns[0]) for uc in unique_constraints if len(uc.columns) == 1
    }

    result = []
    for table in tables:
        key_columns = pk_columns.get(table.name, ())
        columns = {}
        for name, column in table.columns.items():
            in_key = name in key_columns
            columns[name] = column.model_copy(
                update={
                    "primary_key": in_key and len(key_columns) == 1,
                    "unique": (table.name, name) in unique_columns,
                    "not_null": column.not_null or in_key,
                }
            )
        result.append(TableSnapshot(name=table.name, columns=columns))
    return tuple(result)


def is_internal_table(name: str, prefix: str = RESERVED_TABLE_PREFIX) -> bool:
    """Check if a table belongs to dbdelta's own bookkeeping."""
    return name.startswith(prefix)


def normalize_type_name(
    type_name: str,
    synonyms: Optional[Mapping[str, str]] = None,
    known_types: Optional[Iterable[str]] = None,
    dialect: str = "generic",
) -> str:
    """
    Canonicalize a column type name.

    Lowercases and collapses whitespace, maps the base name through the
    dialect synonym table and re-attaches any argument list, so
    ``"Character Varying(255)"`` and ``"varchar(255)"`` compare equal.

    Raises:
        UnknownTypeError: if ``known_types`` is given and the canonical base
            name is not part of it.
    """
    if not type_name or not type_name.strip():
        raise UnknownTypeError(str(type_name), dialect)

    synonyms = synonyms or {}
    lowered = " ".join(type_name.lower().split())
    if lowered in synonyms:
        return synonyms[lowered]

    array_suffix = ""
    while lowered.endswith("[]"):
        array_suffix += "[]"
        lowered = lowered[:-2].rstrip()

    match = _TYPE_PATTERN.match(lowered)
    if match is None:
        raise UnknownTypeError(type_name, dialect)

    base = match.group(1).strip()
    if match.group(3):
        base = f"{base} {match.group(3).strip()}"
    args = (match.group(2) or "").replace(" ", "")

    base = synonyms.get(base, base)
    if known_types is not None and base not in set(known_types):
        raise UnknownTypeError(type_name, dialect)

    return f"{base}{args}{array_suffix}"
