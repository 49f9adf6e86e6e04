"""
Migration files and applied-migration history for dbdelta.

``generate`` freezes a plan into ``<migrations_dir>/<id>.json``; ``apply``
runs the files that are not yet recorded in the ``dbdelta_migrations``
bookkeeping table, oldest first.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Literal, Optional, Sequence, Set, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .database.dialects import Dialect, DialectTraits
from .exceptions import DbdeltaError, MigrationFileError
from .schema.executor import (
    CollectingChannel,
    ExecutionResult,
    SchemaOperations,
    SessionChannel,
    migration_lock,
)
from .schema.operations import SchemaDiff
from .schema.snapshot import RESERVED_TABLE_PREFIX


logger = logging.getLogger(__name__)


MIGRATION_FILE_VERSION = "1"
HISTORY_TABLE = f"{RESERVED_TABLE_PREFIX}migrations"


class MigrationFile(BaseModel):
    """One generated migration."""

    model_config = ConfigDict(extra="forbid")

    id: str
    version: Literal["1"] = MIGRATION_FILE_VERSION
    diff: SchemaDiff = Field(default_factory=SchemaDiff)

    @property
    def operations(self) -> List[Any]:
        return list(self.diff.operations)


def new_migration_id() -> str:
    """Millisecond timestamp id."""
    return str(int(time.time() * 1000))


def _id_order(migration_id: str):
    # numeric ids sort by value, anything else after them by text
    if migration_id.isdigit():
        return (0, int(migration_id), migration_id)
    return (1, 0, migration_id)


def write_migration(
    migrations_dir: Union[str, Path],
    operations: Sequence[Any],
    migration_id: Optional[str] = None,
) -> Path:
    """
    Write operations as a new migration file.

    Returns:
        Path of the written file.

    Raises:
        MigrationFileError: if the file exists or cannot be written.
    """
    directory = Path(migrations_dir)
    migration = MigrationFile(
        id=migration_id or new_migration_id(),
        diff=SchemaDiff(operations=list(operations)),
    )
    path = directory / f"{migration.id}.json"
    if path.exists():
        raise MigrationFileError(
            f"Migration file already exists: {path}", {"id": migration.id}
        )

    try:
        directory.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(migration.model_dump(mode="json"), f, indent=2)
            f.write("\n")
    except OSError as e:
        logger.error(f"Failed to write migration {path}: {e}")
        raise MigrationFileError(f"Failed to write migration {path}", cause=e) from e

    logger.info(f"Wrote migration {migration.id} ({len(migration.operations)} operations)")
    return path


def read_migration(path: Union[str, Path]) -> MigrationFile:
    """Load and validate a migration file."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read migration {path}: {e}")
        raise MigrationFileError(f"Failed to read migration {path}", cause=e) from e

    try:
        migration = MigrationFile.model_validate(data)
    except PydanticValidationError as e:
        logger.error(f"Invalid migration {path}: {e.error_count()} error(s)")
        raise MigrationFileError(
            f"Invalid migration {path}", {"errors": e.error_count()}, e
        ) from e

    if migration.id != path.stem:
        raise MigrationFileError(
            f"Migration id {migration.id!r} does not match file name {path.name}",
            {"id": migration.id},
        )
    return migration


def delete_migration(migrations_dir: Union[str, Path], migration_id: str) -> Path:
    """
    Delete one migration file.

    Raises:
        MigrationFileError: if the file cannot be removed.
    """
    path = Path(migrations_dir) / f"{migration_id}.json"
    try:
        path.unlink()
    except OSError as e:
        logger.error(f"Failed to remove migration {path}: {e}")
        raise MigrationFileError(
            f"Failed to remove migration {path}", {"id": migration_id}, e
        ) from e
    logger.debug(f"Removed migration {migration_id}")
    return path


def list_migrations(migrations_dir: Union[str, Path]) -> List[MigrationFile]:
    """All migrations in the directory, oldest first. A missing directory is empty."""
    directory = Path(migrations_dir)
    if not directory.is_dir():
        return []
    paths = sorted(directory.glob("*.json"), key=lambda p: _id_order(p.stem))
    return [read_migration(path) for path in paths]


_TABLE_EXISTS_QUERIES = {
    Dialect.POSTGRES: (
        "SELECT COUNT(*) AS present FROM information_schema.tables "
        "WHERE table_schema = current_schema() AND table_name = $1"
    ),
    Dialect.COCKROACHDB: (
        "SELECT COUNT(*) AS present FROM information_schema.tables "
        "WHERE table_schema = current_schema() AND table_name = $1"
    ),
    Dialect.MYSQL: (
        "SELECT COUNT(*) AS present FROM information_schema.tables "
        "WHERE table_schema = DATABASE() AND table_name = %s"
    ),
    Dialect.MARIADB: (
        "SELECT COUNT(*) AS present FROM information_schema.tables "
        "WHERE table_schema = DATABASE() AND table_name = %s"
    ),
    Dialect.SQLITE: (
        "SELECT COUNT(*) AS present FROM sqlite_master "
        "WHERE type = 'table' AND name = ?"
    ),
}


class MigrationHistory:
    """The ``dbdelta_migrations`` bookkeeping table."""

    def __init__(self, session, traits: DialectTraits):
        self.session = session
        self.traits = traits

    def _quote(self, identifier: str) -> str:
        q = self.traits.identifier_quote
        return f"{q}{identifier}{q}"

    async def exists(self) -> bool:
        present = await self.session.fetchval(
            _TABLE_EXISTS_QUERIES[self.traits.dialect], HISTORY_TABLE
        )
        return bool(present)

    async def ensure_table(self) -> None:
        await self.session.execute(
            f"CREATE TABLE IF NOT EXISTS {self._quote(HISTORY_TABLE)} ("
            f"{self._quote('id')} VARCHAR(64) NOT NULL PRIMARY KEY, "
            f"{self._quote('applied_at')} TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP)"
        )

    async def applied_ids(self) -> Set[str]:
        """Ids of applied migrations; empty before the table exists."""
        if not await self.exists():
            return set()
        rows = await self.session.fetch(
            f"SELECT {self._quote('id')} AS id FROM {self._quote(HISTORY_TABLE)}"
        )
        return {row["id"] for row in rows}

    async def record(self, migration_id: str) -> None:
        await self.session.execute(
            f"INSERT INTO {self._quote(HISTORY_TABLE)} ({self._quote('id')}) "
            f"VALUES ({self.traits.placeholder(1)})",
            migration_id,
        )
        logger.debug(f"Recorded migration {migration_id}")


@dataclass
class MigrationRun:
    """What happened (or would happen) for one migration."""

    migration: MigrationFile
    statements: List[str] = field(default_factory=list)
    applied: bool = False
    execution_time_ms: float = 0.0


class MigrationRunner:
    """Applies pending migration files in id order."""

    def __init__(self, session, traits: DialectTraits, migrations_dir: Union[str, Path]):
        self.session = session
        self.traits = traits
        self.migrations_dir = Path(migrations_dir)
        self.history = MigrationHistory(session, traits)

    async def pending(self) -> List[MigrationFile]:
        applied = await self.history.applied_ids()
        return [m for m in list_migrations(self.migrations_dir) if m.id not in applied]

    async def plan(self) -> List[MigrationRun]:
        """Render the pending migrations without touching the database."""
        runs = []
        for migration in await self.pending():
            channel = CollectingChannel()
            await SchemaOperations(channel, self.traits).execute_plan(migration.operations)
            runs.append(MigrationRun(migration=migration, statements=channel.statements))
        return runs

    async def apply(self) -> List[MigrationRun]:
        """
        Apply every pending migration under the migration lock.

        Stops at the first failing migration; migrations applied before it
        stay recorded. A migration is recorded in the same transaction as its
        DDL when the dialect has transactional DDL.

        Raises:
            UnsupportedOperationError: if a migration cannot be rendered for
                this dialect. Nothing from that migration runs.
            ApplyError: if a statement fails.
        """
        runs = []
        async with migration_lock(self.session, self.traits):
            await self.history.ensure_table()
            pending = await self.pending()
            if not pending:
                logger.info("No pending migrations")
            for migration in pending:
                logger.info(
                    f"Applying migration {migration.id} ({len(migration.operations)} operations)"
                )
                result = await self._apply_one(migration)
                runs.append(
                    MigrationRun(
                        migration=migration,
                        statements=result.statements,
                        applied=True,
                        execution_time_ms=result.execution_time_ms,
                    )
                )
        return runs

    async def remove_pending(self) -> List[MigrationFile]:
        """Delete the files of every pending migration, oldest first."""
        pending = await self.pending()
        for migration in pending:
            delete_migration(self.migrations_dir, migration.id)
        if pending:
            logger.info(f"Removed {len(pending)} pending migration files")
        return pending

    async def _apply_one(self, migration: MigrationFile) -> ExecutionResult:
        operations = SchemaOperations(SessionChannel(self.session), self.traits)

        async def record():
            await self.history.record(migration.id)

        try:
            return await operations.execute_plan(migration.operations, finalize=record)
        except DbdeltaError as e:
            logger.error(f"Migration {migration.id} failed: {e}")
            raise
