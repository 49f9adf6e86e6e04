"""
Plan execution for dbdelta.

``SchemaOperations`` renders operations and sends the statements through a
``StatementChannel`` passed in by the caller: a ``CollectingChannel``
records them for plan mode, a ``SessionChannel`` runs them against a live
session for apply mode.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from ..database.dialects import DialectTraits
from ..exceptions import ApplyError, DatabaseError
from .ddl import DdlRenderer
from .operations import describe_operation


logger = logging.getLogger(__name__)


MIGRATION_LOCK_KEY = 4_207_391_665
MIGRATION_LOCK_NAME = "dbdelta_migration"


class StatementChannel(Protocol):
    """Where rendered statements go."""

    async def execute(self, sql: str) -> None:
        ...

    def transaction(self) -> AsyncContextManager[Any]:
        ...


class CollectingChannel:
    """Records statements without sending them anywhere."""

    def __init__(self):
        self.statements: List[str] = []

    async def execute(self, sql: str) -> None:
        self.statements.append(sql)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        yield


class SessionChannel:
    """Forwards statements to a live database session."""

    def __init__(self, session):
        self.session = session

    async def execute(self, sql: str) -> None:
        logger.debug(f"SQL: {sql}")
        await self.session.execute(sql)

    def transaction(self) -> AsyncContextManager[Any]:
        return self.session.transaction()


@dataclass
class ExecutionResult:
    """Outcome of a successful plan execution."""

    applied_operations: List[Any] = field(default_factory=list)
    statements: List[str] = field(default_factory=list)
    execution_time_ms: float = 0.0


class SchemaOperations:
    """Executes ordered operations through a statement channel."""

    def __init__(self, channel: StatementChannel, traits: DialectTraits):
        self.channel = channel
        self.traits = traits
        self.renderer = DdlRenderer(traits)

    def render(self, operations: Sequence[Any]) -> List[Tuple[Any, List[str]]]:
        """Render every operation up front; unsupported operations fail here."""
        return [(operation, self.renderer.render(operation)) for operation in operations]

    async def execute_plan(
        self,
        operations: Sequence[Any],
        finalize: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> ExecutionResult:
        """
        Execute operations sequentially in the given order.

        Runs inside one transaction when the dialect has transactional DDL,
        so a failure rolls back everything. Otherwise execution stops at the
        first failure and the operations already applied stay applied. No
        retries either way.

        Args:
            operations: Ordered operations to execute.
            finalize: Awaited after the last operation, inside the same
                transaction when there is one; a failure there is a failure
                of the whole plan.

        Raises:
            UnsupportedOperationError: before anything runs, if an operation
                cannot be rendered for this dialect.
            ApplyError: if a statement or ``finalize`` fails.
        """
        rendered = self.render(operations)
        result = ExecutionResult()
        start_time = time.time()

        if self.traits.supports_transactional_ddl:
            failed = None
            try:
                async with self.channel.transaction():
                    for operation, statements in rendered:
                        failed = operation
                        await self._execute_operation(operation, statements, result)
                    failed = None
                    if finalize is not None:
                        await finalize()
            except Exception as e:
                logger.error(
                    f"Failed to apply {_describe(failed)}: {e}; "
                    f"rolled back {len(result.applied_operations)} applied operations"
                )
                raise ApplyError(
                    failed, result.applied_operations, rolled_back=True, cause=e
                ) from e
        else:
            for operation, statements in rendered:
                try:
                    await self._execute_operation(operation, statements, result)
                except Exception as e:
                    logger.error(
                        f"Failed to apply {_describe(operation)}: {e}; "
                        f"{len(result.applied_operations)} operations were applied before it"
                    )
                    raise ApplyError(
                        operation, result.applied_operations, rolled_back=False, cause=e
                    ) from e
            if finalize is not None:
                try:
                    await finalize()
                except Exception as e:
                    logger.error(f"Failed to finalize plan: {e}")
                    raise ApplyError(
                        None, result.applied_operations, rolled_back=False, cause=e
                    ) from e

        result.execution_time_ms = (time.time() - start_time) * 1000
        verb = "Rendered" if isinstance(self.channel, CollectingChannel) else "Applied"
        logger.info(
            f"{verb} {len(result.applied_operations)} operations "
            f"({len(result.statements)} statements) in {result.execution_time_ms:.0f}ms"
        )
        return result

    async def _execute_operation(
        self, operation: Any, statements: List[str], result: ExecutionResult
    ) -> None:
        for sql in statements:
            await self.channel.execute(sql)
            result.statements.append(sql)
        result.applied_operations.append(operation)
        logger.debug(f"Applied {describe_operation(operation)}")


def _describe(operation: Any) -> str:
    if operation is None:
        return "commit"
    return describe_operation(operation)


@asynccontextmanager
async def migration_lock(
    session, traits: DialectTraits, timeout_seconds: int = 60
) -> AsyncIterator[None]:
    """
    Hold the database's own cross-process migration lock.

    pg_advisory_lock on postgres, GET_LOCK on mysql and mariadb; no lock on
    dialects without such a primitive. Always released on exit.
    """
    if traits.lock_style == "advisory":
        logger.debug("Acquiring advisory migration lock")
        await session.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
        try:
            yield
        finally:
            await session.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)

    elif traits.lock_style == "get_lock":
        logger.debug("Acquiring named migration lock")
        acquired = await session.fetchval(
            "SELECT GET_LOCK(%s, %s) AS acquired", MIGRATION_LOCK_NAME, timeout_seconds
        )
        if acquired != 1:
            raise DatabaseError(
                "Could not acquire migration lock",
                {"lock": MIGRATION_LOCK_NAME, "timeout_seconds": timeout_seconds},
            )
        try:
            yield
        finally:
            await session.execute("SELECT RELEASE_LOCK(%s)", MIGRATION_LOCK_NAME)

    else:
        yield
