"""
Naming conventions for generated constraint and index names.

Used when a column-level flag (``primary_key: true``, ``unique: true``)
implies a constraint, and by dialects whose catalog does not keep
constraint names.
"""

from typing import Sequence


def primary_key_constraint_name(table: str, columns: Sequence[str]) -> str:
    """Format: {table}_{column}_primary_key, or pk_{table}_{columns} for composites."""
    if len(columns) == 1:
        return f"{table}_{columns[0]}_primary_key"
    return f"pk_{table}_{'_'.join(columns)}"


def unique_constraint_name(table: str, columns: Sequence[str]) -> str:
    """Format: {table}_{column}_unique, or uq_{table}_{columns} for composites."""
    if len(columns) == 1:
        return f"{table}_{columns[0]}_unique"
    return f"uq_{table}_{'_'.join(columns)}"


def foreign_key_constraint_name(table: str, columns: Sequence[str]) -> str:
    """Format: fk_{table}_{columns}."""
    return f"fk_{table}_{'_'.join(columns)}"
