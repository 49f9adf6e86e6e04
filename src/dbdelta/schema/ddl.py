"""
DDL rendering for dbdelta.

Turns operations into SQL statements for one dialect. Rendering is driven
by the dialect's ``DialectTraits`` rather than by dialect name, and an
operation the dialect cannot express fails at render time, so plan mode
reports it before anything is applied.
"""

import logging
from typing import Any, List, Optional, Sequence

from ..database.dialects import DialectTraits
from ..exceptions import UnsupportedOperationError
from .snapshot import ColumnDefinition, ReferentialAction


logger = logging.getLogger(__name__)


class DdlRenderer:
    """Renders operations as SQL statements for one dialect."""

    def __init__(self, traits: DialectTraits):
        self.traits = traits

    @property
    def dialect(self) -> str:
        return self.traits.dialect.value

    def quote(self, identifier: str) -> str:
        """Quote an identifier with the dialect's quote character."""
        q = self.traits.identifier_quote
        return f"{q}{identifier.replace(q, q * 2)}{q}"

    def quote_list(self, identifiers: Sequence[str]) -> str:
        return ", ".join(self.quote(identifier) for identifier in identifiers)

    def column_definition(self, name: str, column: ColumnDefinition) -> str:
        """Column DDL; primary key and unique are rendered as constraints."""
        parts = [self.quote(name), column.type]
        if column.not_null:
            parts.append("NOT NULL")
        if column.default_sql is not None:
            parts.append(f"DEFAULT {column.default_sql}")
        return " ".join(parts)

    def render(self, operation: Any) -> List[str]:
        """
        Render one operation.

        Returns an empty list when the operation needs no statement of its
        own (an alter_column that only mirrors a constraint change).

        Raises:
            UnsupportedOperationError: if the dialect cannot express it.
        """
        handler = getattr(self, f"_render_{operation.type}", None)
        if handler is None:
            raise UnsupportedOperationError(operation.type, self.dialect, "unknown operation type")
        return handler(operation)

    def render_all(self, operations: Sequence[Any]) -> List[str]:
        statements: List[str] = []
        for operation in operations:
            statements.extend(self.render(operation))
        logger.debug(f"Rendered {len(operations)} operations as {len(statements)} {self.dialect} statements")
        return statements

    def _unsupported(self, operation: Any, reason: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(operation.type, self.dialect, reason)

    def _alter_table(self, table: str, clause: str) -> str:
        return f"ALTER TABLE {self.quote(table)} {clause}"

    def _render_create_table(self, op) -> List[str]:
        columns = [self.column_definition(name, column) for name, column in op.columns.items()]
        return [f"CREATE TABLE {self.quote(op.table)} ({', '.join(columns)})"]

    def _render_create_table_with_constraints(self, op) -> List[str]:
        parts = [self.column_definition(name, column) for name, column in op.columns.items()]
        if op.constraints.primary_key is not None:
            pk = op.constraints.primary_key
            parts.append(
                f"CONSTRAINT {self.quote(pk.name)} PRIMARY KEY ({self.quote_list(pk.columns)})"
            )
        for unique in op.constraints.unique:
            parts.append(
                f"CONSTRAINT {self.quote(unique.name)} UNIQUE ({self.quote_list(unique.columns)})"
            )
        return [f"CREATE TABLE {self.quote(op.table)} ({', '.join(parts)})"]

    def _render_drop_table(self, op) -> List[str]:
        return [f"DROP TABLE {self.quote(op.table)}"]

    def _render_add_column(self, op) -> List[str]:
        return [
            self._alter_table(op.table, f"ADD COLUMN {self.column_definition(op.column, op.attributes)}")
        ]

    def _render_drop_column(self, op) -> List[str]:
        return [self._alter_table(op.table, f"DROP COLUMN {self.quote(op.column)}")]

    def _render_alter_column(self, op) -> List[str]:
        before, after = op.before, op.after
        type_changed = before.type != after.type
        null_changed = before.not_null != after.not_null
        default_changed = before.default_sql != after.default_sql
        if not (type_changed or null_changed or default_changed):
            return []

        style = self.traits.alter_column_style
        if style is None:
            raise self._unsupported(op, "columns cannot be altered in place")

        column = self.quote(op.column)
        if style == "modify":
            return [
                self._alter_table(op.table, f"MODIFY COLUMN {self.column_definition(op.column, after)}")
            ]

        statements = []
        if type_changed:
            statements.append(self._alter_table(op.table, f"ALTER COLUMN {column} TYPE {after.type}"))
        if null_changed:
            action = "SET NOT NULL" if after.not_null else "DROP NOT NULL"
            statements.append(self._alter_table(op.table, f"ALTER COLUMN {column} {action}"))
        if default_changed:
            if after.default_sql is None:
                action = "DROP DEFAULT"
            else:
                action = f"SET DEFAULT {after.default_sql}"
            statements.append(self._alter_table(op.table, f"ALTER COLUMN {column} {action}"))
        return statements

    def _render_create_index(self, op) -> List[str]:
        unique = "UNIQUE " if op.unique else ""
        return [
            f"CREATE {unique}INDEX {self.quote(op.name)} "
            f"ON {self.quote(op.table)} ({self.quote_list(op.columns)})"
        ]

    def _render_drop_index(self, op) -> List[str]:
        style = self.traits.index_drop_style
        if style == "on_table":
            return [f"DROP INDEX {self.quote(op.name)} ON {self.quote(op.table)}"]
        if style == "table_at":
            return [f"DROP INDEX {self.quote(op.table)}@{self.quote(op.name)}"]
        return [f"DROP INDEX {self.quote(op.name)}"]

    def _require_constraint_alter(self, op) -> None:
        if not self.traits.supports_constraint_alter:
            raise self._unsupported(op, "constraints can only be declared in CREATE TABLE")

    def _render_create_primary_key_constraint(self, op) -> List[str]:
        self._require_constraint_alter(op)
        return [
            self._alter_table(
                op.table,
                f"ADD CONSTRAINT {self.quote(op.name)} PRIMARY KEY ({self.quote_list(op.columns)})",
            )
        ]

    def _render_drop_primary_key_constraint(self, op) -> List[str]:
        self._require_constraint_alter(op)
        if self.traits.constraint_drop_style == "keyword":
            return [self._alter_table(op.table, "DROP PRIMARY KEY")]
        return [self._alter_table(op.table, f"DROP CONSTRAINT {self.quote(op.name)}")]

    def _render_create_unique_constraint(self, op) -> List[str]:
        self._require_constraint_alter(op)
        return [
            self._alter_table(
                op.table,
                f"ADD CONSTRAINT {self.quote(op.name)} UNIQUE ({self.quote_list(op.columns)})",
            )
        ]

    def _render_drop_unique_constraint(self, op) -> List[str]:
        self._require_constraint_alter(op)
        if self.traits.drop_unique_via_index:
            return [f"DROP INDEX {self.quote(op.table)}@{self.quote(op.name)} CASCADE"]
        if self.traits.constraint_drop_style == "keyword":
            return [self._alter_table(op.table, f"DROP INDEX {self.quote(op.name)}")]
        return [self._alter_table(op.table, f"DROP CONSTRAINT {self.quote(op.name)}")]

    def _render_create_foreign_key_constraint(self, op) -> List[str]:
        self._require_constraint_alter(op)
        clause = (
            f"ADD CONSTRAINT {self.quote(op.name)} FOREIGN KEY ({self.quote_list(op.columns)}) "
            f"REFERENCES {self.quote(op.referenced_table)} ({self.quote_list(op.referenced_columns)})"
        )
        clause += _action_clause("ON DELETE", op.on_delete)
        clause += _action_clause("ON UPDATE", op.on_update)
        return [self._alter_table(op.table, clause)]

    def _render_drop_foreign_key_constraint(self, op) -> List[str]:
        self._require_constraint_alter(op)
        if self.traits.constraint_drop_style == "keyword":
            return [self._alter_table(op.table, f"DROP FOREIGN KEY {self.quote(op.name)}")]
        return [self._alter_table(op.table, f"DROP CONSTRAINT {self.quote(op.name)}")]


def _action_clause(keyword: str, action: Optional[ReferentialAction]) -> str:
    if action is None:
        return ""
    return f" {keyword} {ReferentialAction(action).value.upper()}"

