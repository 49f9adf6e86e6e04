"""
Tests for dbdelta.migrations module.
"""

import json
from unittest.mock import call

import pytest

from dbdelta.exceptions import ApplyError, MigrationFileError, UnsupportedOperationError
from dbdelta.migrations import (
    HISTORY_TABLE,
    MigrationHistory,
    MigrationRunner,
    delete_migration,
    list_migrations,
    read_migration,
    write_migration,
)
from dbdelta.schema.executor import MIGRATION_LOCK_KEY
from dbdelta.schema.operations import (
    AlterColumnOperation,
    CreateIndexOperation,
    DropTableOperation,
    OperationType,
)
from dbdelta.schema.snapshot import ColumnDefinition


# ============================================================================
# Migration files
# ============================================================================


class TestMigrationFiles:
    """Test writing, reading and listing migration files."""

    def test_write_then_read(self, tmp_path):
        operations = [
            DropTableOperation(table="legacy"),
            CreateIndexOperation(table="users", name="idx_users_name", columns=["name"]),
        ]

        path = write_migration(tmp_path / "migrations", operations, migration_id="100")

        assert path.name == "100.json"
        migration = read_migration(path)
        assert migration.id == "100"
        assert migration.version == "1"
        assert migration.operations == operations

    def test_file_is_plain_json(self, tmp_path):
        path = write_migration(tmp_path, [DropTableOperation(table="legacy")], "7")

        data = json.loads(path.read_text())

        assert data["id"] == "7"
        assert data["diff"]["operations"] == [{"type": "drop_table", "table": "legacy"}]

    def test_generated_id_is_numeric(self, tmp_path):
        path = write_migration(tmp_path, [])

        assert path.stem.isdigit()

    def test_existing_file_not_overwritten(self, tmp_path):
        write_migration(tmp_path, [], "1")

        with pytest.raises(MigrationFileError, match="already exists"):
            write_migration(tmp_path, [DropTableOperation(table="x")], "1")

        assert read_migration(tmp_path / "1.json").operations == []

    def test_id_must_match_file_name(self, tmp_path):
        path = write_migration(tmp_path, [], "1")
        renamed = path.rename(tmp_path / "2.json")

        with pytest.raises(MigrationFileError, match="does not match"):
            read_migration(renamed)

    def test_invalid_operation_rejected(self, tmp_path):
        path = tmp_path / "3.json"
        path.write_text(
            json.dumps({"id": "3", "version": "1", "diff": {"operations": [{"type": "nuke"}]}})
        )

        with pytest.raises(MigrationFileError, match="Invalid migration"):
            read_migration(path)

    def test_unreadable_json(self, tmp_path):
        path = tmp_path / "4.json"
        path.write_text("{not json")

        with pytest.raises(MigrationFileError, match="Failed to read"):
            read_migration(path)

    def test_list_sorts_ids_numerically(self, tmp_path):
        for migration_id in ("10", "9", "100"):
            write_migration(tmp_path, [], migration_id)

        assert [m.id for m in list_migrations(tmp_path)] == ["9", "10", "100"]

    def test_list_missing_directory(self, tmp_path):
        assert list_migrations(tmp_path / "nowhere") == []


# ============================================================================
# History table
# ============================================================================


class TestMigrationHistory:
    """Test MigrationHistory."""

    @pytest.mark.asyncio
    async def test_applied_ids_before_table_exists(self, mock_session, postgres_traits):
        mock_session.fetchval.return_value = 0

        assert await MigrationHistory(mock_session, postgres_traits).applied_ids() == set()

        mock_session.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_applied_ids(self, mock_session, postgres_traits):
        mock_session.fetchval.return_value = 1
        mock_session.fetch.return_value = [{"id": "1"}, {"id": "2"}]

        assert await MigrationHistory(mock_session, postgres_traits).applied_ids() == {"1", "2"}

        args = mock_session.fetchval.await_args.args
        assert args[1] == HISTORY_TABLE

    @pytest.mark.asyncio
    async def test_record_uses_dialect_placeholder(self, mock_session, mysql_traits):
        await MigrationHistory(mock_session, mysql_traits).record("42")

        mock_session.execute.assert_awaited_once_with(
            "INSERT INTO `dbdelta_migrations` (`id`) VALUES (%s)", "42"
        )

    @pytest.mark.asyncio
    async def test_ensure_table(self, mock_session, sqlite_traits):
        await MigrationHistory(mock_session, sqlite_traits).ensure_table()

        sql = mock_session.execute.await_args.args[0]
        assert sql.startswith('CREATE TABLE IF NOT EXISTS "dbdelta_migrations"')
        assert '"id" VARCHAR(64) NOT NULL PRIMARY KEY' in sql


# ============================================================================
# Runner
# ============================================================================


@pytest.fixture
def migrations_dir(tmp_path):
    directory = tmp_path / "migrations"
    write_migration(directory, [DropTableOperation(table="legacy")], "1")
    write_migration(
        directory,
        [CreateIndexOperation(table="users", name="idx_users_name", columns=["name"])],
        "2",
    )
    return directory


class TestMigrationRunner:
    """Test MigrationRunner."""

    @pytest.mark.asyncio
    async def test_pending_skips_applied(self, mock_session, postgres_traits, migrations_dir):
        mock_session.fetchval.return_value = 1
        mock_session.fetch.return_value = [{"id": "1"}]

        pending = await MigrationRunner(mock_session, postgres_traits, migrations_dir).pending()

        assert [m.id for m in pending] == ["2"]

    @pytest.mark.asyncio
    async def test_plan_renders_without_executing(
        self, mock_session, postgres_traits, migrations_dir
    ):
        mock_session.fetchval.return_value = 0

        runs = await MigrationRunner(mock_session, postgres_traits, migrations_dir).plan()

        assert [(r.migration.id, r.statements, r.applied) for r in runs] == [
            ("1", ['DROP TABLE "legacy"'], False),
            ("2", ['CREATE INDEX "idx_users_name" ON "users" ("name")'], False),
        ]
        mock_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_apply_runs_pending_and_records(
        self, mock_session, postgres_traits, migrations_dir
    ):
        mock_session.fetchval.return_value = 1
        mock_session.fetch.return_value = [{"id": "1"}]

        runs = await MigrationRunner(mock_session, postgres_traits, migrations_dir).apply()

        assert [r.migration.id for r in runs] == ["2"]
        assert runs[0].applied is True
        calls = mock_session.execute.await_args_list
        assert calls[0] == call("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
        assert calls[1].args[0].startswith('CREATE TABLE IF NOT EXISTS "dbdelta_migrations"')
        assert calls[2] == call('CREATE INDEX "idx_users_name" ON "users" ("name")')
        assert calls[3] == call('INSERT INTO "dbdelta_migrations" ("id") VALUES ($1)', "2")
        assert calls[4] == call("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)

    @pytest.mark.asyncio
    async def test_apply_nothing_pending(self, mock_session, postgres_traits, migrations_dir):
        mock_session.fetchval.return_value = 1
        mock_session.fetch.return_value = [{"id": "1"}, {"id": "2"}]

        runs = await MigrationRunner(mock_session, postgres_traits, migrations_dir).apply()

        assert runs == []

    @pytest.mark.asyncio
    async def test_failed_migration_not_recorded(
        self, mock_session, postgres_traits, migrations_dir
    ):
        mock_session.fetchval.return_value = 0

        async def execute(sql, *args):
            if sql.startswith("DROP TABLE"):
                raise Exception("table is referenced")

        mock_session.execute.side_effect = execute

        with pytest.raises(ApplyError) as exc_info:
            await MigrationRunner(mock_session, postgres_traits, migrations_dir).apply()

        assert exc_info.value.failed_operation.type == OperationType.DROP_TABLE
        executed = [c.args[0] for c in mock_session.execute.await_args_list]
        assert not any(sql.startswith("INSERT") for sql in executed)
        assert executed[-1] == "SELECT pg_advisory_unlock($1)"

    @pytest.mark.asyncio
    async def test_unsupported_migration_runs_nothing(
        self, mock_session, sqlite_traits, tmp_path
    ):
        write_migration(
            tmp_path,
            [
                AlterColumnOperation(
                    table="users",
                    column="age",
                    before=ColumnDefinition(type="text"),
                    after=ColumnDefinition(type="integer"),
                )
            ],
            "1",
        )
        mock_session.fetchval.return_value = 0

        with pytest.raises(UnsupportedOperationError):
            await MigrationRunner(mock_session, sqlite_traits, tmp_path).apply()

        executed = [c.args[0] for c in mock_session.execute.await_args_list]
        assert len(executed) == 1
        assert executed[0].startswith("CREATE TABLE IF NOT EXISTS")

    @pytest.mark.asyncio
    async def test_history_insert_shares_migration_transaction(
        self, mock_session, postgres_traits, migrations_dir
    ):
        mock_session.fetchval.return_value = 1
        mock_session.fetch.return_value = [{"id": "1"}]

        async def execute(sql, *args):
            if sql.startswith("INSERT INTO"):
                raise Exception("permission denied for table dbdelta_migrations")

        mock_session.execute.side_effect = execute

        with pytest.raises(ApplyError) as exc_info:
            await MigrationRunner(mock_session, postgres_traits, migrations_dir).apply()

        assert exc_info.value.rolled_back is True
        transaction = mock_session.transaction.return_value
        exc_type, _, _ = transaction.__aexit__.await_args.args
        assert exc_type is Exception
        executed = [c.args[0] for c in mock_session.execute.await_args_list]
        assert executed[-3:] == [
            'CREATE INDEX "idx_users_name" ON "users" ("name")',
            'INSERT INTO "dbdelta_migrations" ("id") VALUES ($1)',
            "SELECT pg_advisory_unlock($1)",
        ]

    @pytest.mark.asyncio
    async def test_remove_pending(self, mock_session, postgres_traits, migrations_dir):
        mock_session.fetchval.return_value = 1
        mock_session.fetch.return_value = [{"id": "1"}]

        removed = await MigrationRunner(
            mock_session, postgres_traits, migrations_dir
        ).remove_pending()

        assert [m.id for m in removed] == ["2"]
        assert [p.name for p in migrations_dir.glob("*.json")] == ["1.json"]


class TestDeleteMigration:
    """Test delete_migration."""

    def test_deletes_file(self, tmp_path):
        path = write_migration(tmp_path, [DropTableOperation(table="legacy")], "7")

        assert delete_migration(tmp_path, "7") == path
        assert not path.exists()

    def test_missing_file(self, tmp_path):
        with pytest.raises(MigrationFileError):
            delete_migration(tmp_path, "7")
