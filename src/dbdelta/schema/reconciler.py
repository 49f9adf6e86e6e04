"""
Schema reconciliation core logic for dbdelta.

Coordinates introspection, diffing, planning and execution so that the
live database matches the configured schema.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from ..config import DbdeltaConfig
from ..database.dialects import create_introspection_driver, get_dialect_traits
from ..database.introspection import SchemaIntrospector
from ..exceptions import UnsupportedOperationError
from .diff import diff_schema
from .executor import CollectingChannel, SchemaOperations, SessionChannel, migration_lock
from .operations import SchemaDiff
from .snapshot import SchemaSnapshot
from .sorter import MigrationPlan, build_plan


logger = logging.getLogger(__name__)


class ReconciliationStatus(str, Enum):
    """Status of reconciliation operations."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReconciliationResult:
    """Result of a plan or apply run."""

    status: ReconciliationStatus
    dialect: str
    planned_operations: List[Any] = field(default_factory=list)
    statements: List[str] = field(default_factory=list)
    applied_operations: List[Any] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def has_changes(self) -> bool:
        return bool(self.planned_operations)

    @property
    def applied_count(self) -> int:
        return len(self.applied_operations)


class SchemaReconciler:
    """
    Core schema reconciliation engine for dbdelta.

    Works on one open session:
    - reads the live schema through the dialect's introspection driver
    - diffs it against the configured schema
    - builds an ordered plan and renders or applies it
    """

    def __init__(self, session, config: DbdeltaConfig):
        self.session = session
        self.config = config
        self.traits = get_dialect_traits(config.database.dialect)
        self.driver = create_introspection_driver(
            config.database.dialect, session, config.database.extra_types
        )
        self.introspector = SchemaIntrospector(self.driver)
        self._ideal: Optional[SchemaSnapshot] = None

    @property
    def ideal(self) -> SchemaSnapshot:
        """The configured schema, with types canonicalized like the catalog's."""
        if self._ideal is None:
            self._ideal = self.config.to_snapshot(self.driver.convert_type_name)
        return self._ideal

    async def introspect(self) -> SchemaSnapshot:
        return await self.introspector.introspect(self.ideal)

    async def compute_diff(self) -> SchemaDiff:
        """Diff the live schema against the configured one."""
        current = await self.introspect()
        diff = diff_schema(current, self.ideal)
        logger.info(f"Computed {len(diff.operations)} schema operations")
        return diff

    async def compute_plan(self) -> MigrationPlan:
        diff = await self.compute_diff()
        return build_plan(diff.operations)

    async def plan(self) -> ReconciliationResult:
        """
        Render the plan without writing anything.

        Operations the dialect cannot express are reported in ``errors``
        instead of aborting, so every problem shows up in one run.
        """
        start_time = time.time()
        plan = await self.compute_plan()
        result = ReconciliationResult(
            status=ReconciliationStatus.SKIPPED,
            dialect=self.traits.dialect.value,
            planned_operations=list(plan.operations),
        )
        if plan.is_empty:
            logger.info("Schema is up to date")
            return result

        channel = CollectingChannel()
        operations = SchemaOperations(channel, self.traits)
        supported = []
        for operation in plan.operations:
            try:
                operations.render([operation])
            except UnsupportedOperationError as e:
                logger.error(str(e))
                result.errors.append(str(e))
            else:
                supported.append(operation)

        await operations.execute_plan(supported)
        result.statements = channel.statements

        if not result.errors:
            result.status = ReconciliationStatus.SUCCESS
        elif result.statements:
            result.status = ReconciliationStatus.PARTIAL
        else:
            result.status = ReconciliationStatus.FAILED
        result.execution_time_ms = (time.time() - start_time) * 1000
        return result

    async def apply(self) -> ReconciliationResult:
        """
        Bring the live schema in line with the configuration.

        Holds the migration lock from introspection through execution.

        Raises:
            UnsupportedOperationError: if the plan cannot be rendered; nothing
                is executed.
            ApplyError: if a statement fails.
        """
        start_time = time.time()
        async with migration_lock(self.session, self.traits):
            plan = await self.compute_plan()
            result = ReconciliationResult(
                status=ReconciliationStatus.SKIPPED,
                dialect=self.traits.dialect.value,
                planned_operations=list(plan.operations),
            )
            if plan.is_empty:
                logger.info("Schema is up to date")
                return result

            operations = SchemaOperations(SessionChannel(self.session), self.traits)
            execution = await operations.execute_plan(plan.operations)

        result.status = ReconciliationStatus.SUCCESS
        result.statements = execution.statements
        result.applied_operations = execution.applied_operations
        result.execution_time_ms = (time.time() - start_time) * 1000
        return result
