"""
Database schema introspection for dbdelta.

Turns live catalog metadata into the "current" schema snapshot. Catalog
queries live in per-dialect drivers (see ``dialects``); this module holds
the dialect-independent part: assembling the snapshot, resolving names the
catalog does not keep, and reconciling the artifacts a dialect creates on
its own so they never show up as spurious changes.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Protocol, Sequence, Set, Tuple, runtime_checkable

from ..exceptions import DbdeltaError, IntrospectionError
from ..schema.snapshot import (
    ForeignKeyConstraint,
    IndexDefinition,
    PrimaryKeyConstraint,
    SchemaSnapshot,
    TableSnapshot,
    UniqueConstraint,
    derive_column_flags,
)


logger = logging.getLogger(__name__)


PRIMARY_KEY = "primary_key"
UNIQUE = "unique"
FOREIGN_KEY = "foreign_key"


@dataclass
class IntrospectedConstraints:
    """Constraints reported by a driver, grouped by kind."""

    primary_key: List[PrimaryKeyConstraint] = field(default_factory=list)
    unique: List[UniqueConstraint] = field(default_factory=list)
    foreign_key: List[ForeignKeyConstraint] = field(default_factory=list)


@runtime_checkable
class IntrospectionDriver(Protocol):
    """
    Per-dialect catalog access.

    ``unnamed_constraint_kinds`` lists the constraint kinds whose names the
    catalog does not keep; the driver reports them under the naming
    convention and the introspector maps them onto configured names.
    """

    dialect: str
    unnamed_constraint_kinds: FrozenSet[str]

    async def introspect_tables(self) -> List[TableSnapshot]:
        ...

    async def introspect_indexes(self) -> List[IndexDefinition]:
        ...

    async def introspect_constraints(self) -> IntrospectedConstraints:
        ...

    def convert_type_name(self, type_name: str) -> str:
        ...

    def implicit_index_keys(
        self, constraints: IntrospectedConstraints
    ) -> Set[Tuple[str, str]]:
        ...


def reconcile_auto_generated_artifacts(
    ideal: SchemaSnapshot,
    indexes: Sequence[IndexDefinition],
    unique_constraints: Sequence[UniqueConstraint],
) -> Tuple[List[IndexDefinition], List[UniqueConstraint]]:
    """
    Remove a dialect's shadow artifacts from the introspected sets.

    Introspected unique indexes and unique constraints are "adopted" when
    their (table, name) is also configured. An unconfigured unique index
    sharing (table, name) with an adopted unique constraint is the shadow of
    that constraint and is dropped, and symmetrically for an unconfigured
    unique constraint shadowing an adopted unique index.
    """
    configured_indexes = {index.key for index in ideal.indexes}
    configured_uniques = {constraint.key for constraint in ideal.unique_constraints}

    adopted_uniques = {c.key for c in unique_constraints if c.key in configured_uniques}
    adopted_indexes = {
        i.key for i in indexes if i.unique and i.key in configured_indexes
    }

    kept_indexes = []
    for index in indexes:
        if (
            index.unique
            and index.key not in configured_indexes
            and index.key in adopted_uniques
        ):
            logger.debug(f"Ignoring index {index.name} on {index.table}: backs unique constraint")
            continue
        kept_indexes.append(index)

    kept_uniques = []
    for constraint in unique_constraints:
        if constraint.key not in configured_uniques and constraint.key in adopted_indexes:
            logger.debug(
                f"Ignoring unique constraint {constraint.name} on {constraint.table}: "
                f"shadows unique index"
            )
            continue
        kept_uniques.append(constraint)

    return kept_indexes, kept_uniques


def drop_implicit_indexes(
    ideal: SchemaSnapshot,
    indexes: Sequence[IndexDefinition],
    implicit_keys: Set[Tuple[str, str]],
) -> List[IndexDefinition]:
    """
    Remove indexes a dialect created on its own to back a foreign key.

    Only indexes whose foreign key is still configured are hidden. Once the
    key leaves the configuration its leftover index is reported, so the plan
    that drops the key also drops the index. Configured indexes are kept.
    """
    configured = {index.key for index in ideal.indexes}
    hidden = implicit_keys & {fk.key for fk in ideal.foreign_key_constraints}
    return [i for i in indexes if i.key not in hidden or i.key in configured]


def adopt_configured_names(
    ideal: SchemaSnapshot,
    constraints: IntrospectedConstraints,
    kinds: FrozenSet[str],
) -> IntrospectedConstraints:
    """
    Map constraints reported under a placeholder name onto the configured
    constraint with the same structure, so unnamed catalogs do not churn.
    """
    if not kinds:
        return constraints

    primary_key = constraints.primary_key
    if PRIMARY_KEY in kinds:
        by_structure = {(c.table, c.columns): c.name for c in ideal.primary_key_constraints}
        primary_key = [
            c.model_copy(update={"name": by_structure.get((c.table, c.columns), c.name)})
            for c in constraints.primary_key
        ]

    unique = constraints.unique
    if UNIQUE in kinds:
        by_structure = {(c.table, c.columns): c.name for c in ideal.unique_constraints}
        unique = [
            c.model_copy(update={"name": by_structure.get((c.table, c.columns), c.name)})
            for c in constraints.unique
        ]

    foreign_key = constraints.foreign_key
    if FOREIGN_KEY in kinds:
        by_structure = {
            (c.table, c.columns, c.referenced_table, c.referenced_columns): c.name
            for c in ideal.foreign_key_constraints
        }
        foreign_key = [
            c.model_copy(
                update={
                    "name": by_structure.get(
                        (c.table, c.columns, c.referenced_table, c.referenced_columns),
                        c.name,
                    )
                }
            )
            for c in constraints.foreign_key
        ]

    return IntrospectedConstraints(
        primary_key=primary_key, unique=unique, foreign_key=foreign_key
    )


class SchemaIntrospector:
    """Builds the current schema snapshot from a driver."""

    def __init__(self, driver: IntrospectionDriver):
        self.driver = driver

    async def introspect(self, ideal: SchemaSnapshot) -> SchemaSnapshot:
        """
        Read the live schema.

        Each catalog read is issued exactly once and in sequence; any failure
        aborts the whole read so a partial snapshot is never returned.

        Args:
            ideal: The configured schema, used to tell adopted artifacts from
                dialect bookkeeping.
        """
        dialect = self.driver.dialect
        try:
            tables = await self.driver.introspect_tables()
            indexes = await self.driver.introspect_indexes()
            constraints = await self.driver.introspect_constraints()
        except DbdeltaError:
            raise
        except Exception as e:
            logger.error(f"Failed to introspect {dialect} schema: {e}")
            raise IntrospectionError(
                f"Failed to introspect {dialect} schema", {"dialect": dialect}, e
            ) from e

        logger.debug(
            f"Introspected {len(tables)} tables, {len(indexes)} indexes, "
            f"{len(constraints.primary_key)} primary keys, "
            f"{len(constraints.unique)} unique constraints, "
            f"{len(constraints.foreign_key)} foreign keys"
        )

        indexes = drop_implicit_indexes(
            ideal, indexes, self.driver.implicit_index_keys(constraints)
        )
        constraints = adopt_configured_names(
            ideal, constraints, self.driver.unnamed_constraint_kinds
        )
        indexes, uniques = reconcile_auto_generated_artifacts(
            ideal, indexes, constraints.unique
        )

        try:
            snapshot = SchemaSnapshot(
                tables=derive_column_flags(tables, constraints.primary_key, uniques),
                indexes=tuple(indexes),
                primary_key_constraints=tuple(constraints.primary_key),
                unique_constraints=tuple(uniques),
                foreign_key_constraints=tuple(constraints.foreign_key),
            )
        except ValueError as e:
            logger.error(f"Introspected {dialect} schema is inconsistent: {e}")
            raise IntrospectionError(
                f"Introspected {dialect} schema is inconsistent", {"dialect": dialect}, e
            ) from e

        return snapshot.without_internal_tables()
