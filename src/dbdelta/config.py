"""
Configuration system for dbdelta using Pydantic.

The configuration file declares the desired schema plus the database to
migrate. ``DbdeltaConfig.to_snapshot`` turns it into the ideal schema
snapshot the diff engine compares against.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Set, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.dialects import Dialect, get_dialect_traits, make_type_converter
from .exceptions import ConfigurationError
from .naming import primary_key_constraint_name, unique_constraint_name
from .schema.snapshot import (
    RESERVED_TABLE_PREFIX,
    ColumnDefinition,
    ForeignKeyConstraint,
    IndexDefinition,
    PrimaryKeyConstraint,
    ReferentialAction,
    SchemaSnapshot,
    TableSnapshot,
    UniqueConstraint,
    derive_column_flags,
)


logger = logging.getLogger(__name__)


class DatabaseConfig(BaseModel):
    """Target database."""

    dialect: Dialect = Field(..., description="SQL dialect of the target database")
    connection_string: str = Field(..., description="Connection URL, or file path for sqlite")
    extra_types: List[str] = Field(
        default_factory=list,
        description="User-defined type names (enums, domains) accepted as column types",
    )


class ColumnConfig(BaseModel):
    """Configuration for a single column."""

    model_config = ConfigDict(extra="forbid")

    type: str = Field(..., description="Column type")
    not_null: bool = Field(False, description="Reject NULL values")
    primary_key: bool = Field(False, description="Part of the table's primary key")
    unique: bool = Field(False, description="Single-column unique constraint")
    default_sql: Optional[str] = Field(None, description="Default value SQL expression")


class TableConfig(BaseModel):
    """Configuration for a single table."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Table name")
    columns: Dict[str, ColumnConfig] = Field(..., description="Columns by name")

    @field_validator("columns", mode="before")
    @classmethod
    def expand_type_shorthand(cls, v: Any) -> Any:
        # `id: uuid` is shorthand for `id: {type: uuid}`
        if isinstance(v, dict):
            return {
                name: {"type": definition} if isinstance(definition, str) else definition
                for name, definition in v.items()
            }
        return v

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: Dict[str, ColumnConfig]) -> Dict[str, ColumnConfig]:
        if not v:
            raise ValueError("a table needs at least one column")
        return v


class IndexConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    table: str
    name: str
    columns: List[str]
    unique: bool = False


class KeyConstraintConfig(BaseModel):
    """Primary key or unique constraint."""

    model_config = ConfigDict(extra="forbid")

    table: str
    name: str
    columns: List[str]


class ForeignKeyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    table: str
    name: str
    columns: List[str]
    referenced_table: str
    referenced_columns: List[str]
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class DbdeltaConfig(BaseSettings):
    """Main dbdelta configuration."""

    database: DatabaseConfig = Field(..., description="Target database")
    migrations_dir: str = Field("migrations", description="Directory of migration files")

    tables: List[TableConfig] = Field(default_factory=list, description="Desired tables")
    indexes: List[IndexConfig] = Field(default_factory=list, description="Desired indexes")
    primary_key_constraints: List[KeyConstraintConfig] = Field(
        default_factory=list, description="Desired primary key constraints"
    )
    unique_constraints: List[KeyConstraintConfig] = Field(
        default_factory=list, description="Desired unique constraints"
    )
    foreign_key_constraints: List[ForeignKeyConfig] = Field(
        default_factory=list, description="Desired foreign key constraints"
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DBDELTA_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DbdeltaConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)

            if not isinstance(data, dict):
                raise ConfigurationError(f"Configuration file must contain a mapping: {path}")

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {path}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def get_table(self, name: str) -> TableConfig:
        """Get table configuration by name."""
        for table in self.tables:
            if table.name == name:
                return table
        raise ConfigurationError(f"Table configuration '{name}' not found")

    def _check_columns(self, kind: str, name: str, table: str, columns: List[str]) -> None:
        if not columns:
            raise ConfigurationError(f"{kind} '{name}' on table '{table}' has no columns")
        if len(set(columns)) != len(columns):
            raise ConfigurationError(
                f"{kind} '{name}' on table '{table}' lists a column twice: {columns}"
            )
        known = self.get_table(table).columns
        missing = [column for column in columns if column not in known]
        if missing:
            raise ConfigurationError(
                f"{kind} '{name}' references unknown columns on table '{table}': {missing}"
            )

    def _check_table(self, kind: str, name: str, table: str) -> None:
        if table not in {t.name for t in self.tables}:
            raise ConfigurationError(f"{kind} '{name}' references unknown table '{table}'")

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        names = [table.name for table in self.tables]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate table names: {duplicates}")

        for table in self.tables:
            if table.name.startswith(RESERVED_TABLE_PREFIX):
                raise ConfigurationError(
                    f"Table name '{table.name}' uses the reserved prefix '{RESERVED_TABLE_PREFIX}'"
                )

        seen: Set[Tuple[str, str, str]] = set()

        def check_unique_identity(kind: str, table: str, name: str) -> None:
            key = (kind, table, name)
            if key in seen:
                raise ConfigurationError(f"Duplicate {kind} '{name}' on table '{table}'")
            seen.add(key)

        for index in self.indexes:
            self._check_table("Index", index.name, index.table)
            self._check_columns("Index", index.name, index.table, index.columns)
            check_unique_identity("index", index.table, index.name)

        pk_tables: Dict[str, str] = {}
        for table in self.tables:
            if any(column.primary_key for column in table.columns.values()):
                pk_tables[table.name] = "column-level primary_key"
        for pk in self.primary_key_constraints:
            self._check_table("Primary key", pk.name, pk.table)
            self._check_columns("Primary key", pk.name, pk.table, pk.columns)
            if pk.table in pk_tables:
                raise ConfigurationError(
                    f"Table '{pk.table}' has more than one primary key "
                    f"('{pk.name}' and {pk_tables[pk.table]})"
                )
            pk_tables[pk.table] = f"'{pk.name}'"

        for unique in self.unique_constraints:
            self._check_table("Unique constraint", unique.name, unique.table)
            self._check_columns("Unique constraint", unique.name, unique.table, unique.columns)
            check_unique_identity("unique constraint", unique.table, unique.name)

        for fk in self.foreign_key_constraints:
            self._check_table("Foreign key", fk.name, fk.table)
            self._check_columns("Foreign key", fk.name, fk.table, fk.columns)
            self._check_table("Foreign key", fk.name, fk.referenced_table)
            self._check_columns("Foreign key", fk.name, fk.referenced_table, fk.referenced_columns)
            if len(fk.columns) != len(fk.referenced_columns):
                raise ConfigurationError(
                    f"Foreign key '{fk.name}' maps {len(fk.columns)} columns "
                    f"to {len(fk.referenced_columns)} referenced columns"
                )
            check_unique_identity("foreign key", fk.table, fk.name)

    def to_snapshot(
        self, convert_type_name: Optional[Callable[[str], str]] = None
    ) -> SchemaSnapshot:
        """
        Build the ideal schema snapshot.

        Column-level ``primary_key`` and ``unique`` flags become constraints
        named by the naming convention; primary key columns are NOT NULL.
        Column flags are then re-derived from single-column constraints, the
        same rule introspection follows.

        Args:
            convert_type_name: Type canonicalizer; defaults to the configured
                dialect's.
        """
        if convert_type_name is None:
            traits = get_dialect_traits(self.database.dialect)
            convert_type_name = make_type_converter(traits, self.database.extra_types)

        tables = []
        primary_keys = []
        uniques = []

        for table in self.tables:
            columns = {
                name: ColumnDefinition(
                    type=convert_type_name(column.type),
                    not_null=column.not_null,
                    default_sql=column.default_sql,
                )
                for name, column in table.columns.items()
            }
            tables.append(TableSnapshot(name=table.name, columns=columns))

            key_columns = [name for name, column in table.columns.items() if column.primary_key]
            if key_columns:
                primary_keys.append(
                    PrimaryKeyConstraint(
                        table=table.name,
                        name=primary_key_constraint_name(table.name, key_columns),
                        columns=key_columns,
                    )
                )

            declared = {
                tuple(uc.columns) for uc in self.unique_constraints if uc.table == table.name
            }
            for name, column in table.columns.items():
                if column.unique and (name,) not in declared:
                    uniques.append(
                        UniqueConstraint(
                            table=table.name,
                            name=unique_constraint_name(table.name, [name]),
                            columns=[name],
                        )
                    )

        primary_keys.extend(
            PrimaryKeyConstraint(table=pk.table, name=pk.name, columns=pk.columns)
            for pk in self.primary_key_constraints
        )
        uniques.extend(
            UniqueConstraint(table=uc.table, name=uc.name, columns=uc.columns)
            for uc in self.unique_constraints
        )

        try:
            return SchemaSnapshot(
                tables=derive_column_flags(tables, primary_keys, uniques),
                indexes=tuple(
                    IndexDefinition(
                        table=index.table,
                        name=index.name,
                        columns=index.columns,
                        unique=index.unique,
                    )
                    for index in self.indexes
                ),
                primary_key_constraints=tuple(primary_keys),
                unique_constraints=tuple(uniques),
                foreign_key_constraints=tuple(
                    ForeignKeyConstraint(
                        table=fk.table,
                        name=fk.name,
                        columns=fk.columns,
                        referenced_table=fk.referenced_table,
                        referenced_columns=fk.referenced_columns,
                        on_delete=_explicit_action(fk.on_delete),
                        on_update=_explicit_action(fk.on_update),
                    )
                    for fk in self.foreign_key_constraints
                ),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid schema definition: {e}") from e


def _explicit_action(action: Optional[ReferentialAction]) -> Optional[ReferentialAction]:
    # NO ACTION is the default everywhere and introspects as None
    if action == ReferentialAction.NO_ACTION:
        return None
    return action
