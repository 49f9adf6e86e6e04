"""
Tests for dbdelta.schema.ddl module.
"""

import pytest

from dbdelta.exceptions import UnsupportedOperationError
from dbdelta.schema.ddl import DdlRenderer
from dbdelta.schema.operations import (
    AddColumnOperation,
    AlterColumnOperation,
    CreateForeignKeyConstraintOperation,
    CreateIndexOperation,
    CreatePrimaryKeyConstraintOperation,
    CreateTableOperation,
    CreateTableWithConstraintsOperation,
    DropColumnOperation,
    DropForeignKeyConstraintOperation,
    DropIndexOperation,
    DropPrimaryKeyConstraintOperation,
    DropTableOperation,
    DropUniqueConstraintOperation,
    InlineConstraint,
    TableConstraints,
)
from dbdelta.schema.snapshot import ColumnDefinition


def _fk(**actions):
    return CreateForeignKeyConstraintOperation(
        table="posts",
        name="fk_posts_user_id",
        columns=["user_id"],
        referenced_table="users",
        referenced_columns=["id"],
        **actions,
    )


class TestCommonRendering:
    """Rendering shared by all dialects."""

    def test_quote_escapes_quote_character(self, postgres_traits, mysql_traits):
        assert DdlRenderer(postgres_traits).quote('we"ird') == '"we""ird"'
        assert DdlRenderer(mysql_traits).quote("we`ird") == "`we``ird`"

    def test_create_table(self, postgres_traits):
        op = CreateTableOperation(
            table="users",
            columns={
                "id": ColumnDefinition(type="uuid", not_null=True, primary_key=True),
                "name": ColumnDefinition(type="text", default_sql="'anon'"),
            },
        )

        assert DdlRenderer(postgres_traits).render(op) == [
            "CREATE TABLE \"users\" (\"id\" uuid NOT NULL, \"name\" text DEFAULT 'anon')"
        ]

    def test_create_table_with_constraints(self, sqlite_traits):
        op = CreateTableWithConstraintsOperation(
            table="users",
            columns={
                "id": ColumnDefinition(type="integer", not_null=True),
                "email": ColumnDefinition(type="text"),
            },
            constraints=TableConstraints(
                primary_key=InlineConstraint(name="pk_users_id", columns=["id"]),
                unique=(InlineConstraint(name="users_email_unique", columns=["email"]),),
            ),
        )

        assert DdlRenderer(sqlite_traits).render(op) == [
            'CREATE TABLE "users" ("id" integer NOT NULL, "email" text, '
            'CONSTRAINT "pk_users_id" PRIMARY KEY ("id"), '
            'CONSTRAINT "users_email_unique" UNIQUE ("email"))'
        ]

    def test_add_and_drop_column(self, postgres_traits):
        renderer = DdlRenderer(postgres_traits)
        attributes = ColumnDefinition(type="integer", not_null=True, default_sql="0")

        assert renderer.render(
            AddColumnOperation(table="users", column="age", attributes=attributes)
        ) == ['ALTER TABLE "users" ADD COLUMN "age" integer NOT NULL DEFAULT 0']
        assert renderer.render(
            DropColumnOperation(table="users", column="age", attributes=attributes)
        ) == ['ALTER TABLE "users" DROP COLUMN "age"']

    def test_create_index(self, mysql_traits):
        op = CreateIndexOperation(
            table="people", name="idx_name_age", columns=["name", "age"], unique=True
        )

        assert DdlRenderer(mysql_traits).render(op) == [
            "CREATE UNIQUE INDEX `idx_name_age` ON `people` (`name`, `age`)"
        ]

    def test_drop_table(self, cockroach_traits):
        assert DdlRenderer(cockroach_traits).render(DropTableOperation(table="users")) == [
            'DROP TABLE "users"'
        ]

    def test_render_all_flattens(self, postgres_traits):
        statements = DdlRenderer(postgres_traits).render_all(
            [DropTableOperation(table="a"), DropTableOperation(table="b")]
        )

        assert statements == ['DROP TABLE "a"', 'DROP TABLE "b"']


class TestAlterColumn:
    """Test alter_column forms."""

    def _op(self, before, after):
        return AlterColumnOperation(table="users", column="name", before=before, after=after)

    def test_postgres_minimal_alters(self, postgres_traits):
        op = self._op(
            ColumnDefinition(type="text", default_sql="'a'"),
            ColumnDefinition(type="varchar(100)", not_null=True),
        )

        assert DdlRenderer(postgres_traits).render(op) == [
            'ALTER TABLE "users" ALTER COLUMN "name" TYPE varchar(100)',
            'ALTER TABLE "users" ALTER COLUMN "name" SET NOT NULL',
            'ALTER TABLE "users" ALTER COLUMN "name" DROP DEFAULT',
        ]

    def test_postgres_only_changed_parts(self, postgres_traits):
        op = self._op(ColumnDefinition(type="text", not_null=True), ColumnDefinition(type="text"))

        assert DdlRenderer(postgres_traits).render(op) == [
            'ALTER TABLE "users" ALTER COLUMN "name" DROP NOT NULL'
        ]

    def test_mysql_modify_column(self, mysql_traits):
        op = self._op(
            ColumnDefinition(type="text"), ColumnDefinition(type="varchar(100)", not_null=True)
        )

        assert DdlRenderer(mysql_traits).render(op) == [
            "ALTER TABLE `users` MODIFY COLUMN `name` varchar(100) NOT NULL"
        ]

    def test_constraint_flag_change_renders_nothing(self, postgres_traits, sqlite_traits):
        op = self._op(ColumnDefinition(type="text"), ColumnDefinition(type="text", unique=True))

        assert DdlRenderer(postgres_traits).render(op) == []
        assert DdlRenderer(sqlite_traits).render(op) == []

    def test_sqlite_cannot_alter(self, sqlite_traits):
        op = self._op(ColumnDefinition(type="text"), ColumnDefinition(type="integer"))

        with pytest.raises(UnsupportedOperationError) as exc_info:
            DdlRenderer(sqlite_traits).render(op)

        assert exc_info.value.dialect == "sqlite"
        assert exc_info.value.operation_type == "alter_column"


class TestDialectForms:
    """Test the per-dialect drop and constraint forms."""

    def test_drop_index_forms(self, postgres_traits, mysql_traits, cockroach_traits):
        op = DropIndexOperation(table="users", name="idx_users_name")

        assert DdlRenderer(postgres_traits).render(op) == ['DROP INDEX "idx_users_name"']
        assert DdlRenderer(mysql_traits).render(op) == ["DROP INDEX `idx_users_name` ON `users`"]
        assert DdlRenderer(cockroach_traits).render(op) == ['DROP INDEX "users"@"idx_users_name"']

    def test_drop_primary_key_forms(self, postgres_traits, mariadb_traits):
        op = DropPrimaryKeyConstraintOperation(table="users", name="users_pkey")

        assert DdlRenderer(postgres_traits).render(op) == [
            'ALTER TABLE "users" DROP CONSTRAINT "users_pkey"'
        ]
        assert DdlRenderer(mariadb_traits).render(op) == ["ALTER TABLE `users` DROP PRIMARY KEY"]

    def test_drop_unique_forms(self, postgres_traits, mysql_traits, cockroach_traits):
        op = DropUniqueConstraintOperation(table="users", name="users_email_unique")

        assert DdlRenderer(postgres_traits).render(op) == [
            'ALTER TABLE "users" DROP CONSTRAINT "users_email_unique"'
        ]
        assert DdlRenderer(mysql_traits).render(op) == [
            "ALTER TABLE `users` DROP INDEX `users_email_unique`"
        ]
        assert DdlRenderer(cockroach_traits).render(op) == [
            'DROP INDEX "users"@"users_email_unique" CASCADE'
        ]

    def test_drop_foreign_key_forms(self, postgres_traits, mysql_traits):
        op = DropForeignKeyConstraintOperation(table="posts", name="fk_posts_user_id")

        assert DdlRenderer(postgres_traits).render(op) == [
            'ALTER TABLE "posts" DROP CONSTRAINT "fk_posts_user_id"'
        ]
        assert DdlRenderer(mysql_traits).render(op) == [
            "ALTER TABLE `posts` DROP FOREIGN KEY `fk_posts_user_id`"
        ]

    def test_create_primary_key(self, postgres_traits):
        op = CreatePrimaryKeyConstraintOperation(
            table="memberships", name="pk_memberships", columns=["user_id", "team_id"]
        )

        assert DdlRenderer(postgres_traits).render(op) == [
            'ALTER TABLE "memberships" ADD CONSTRAINT "pk_memberships" '
            'PRIMARY KEY ("user_id", "team_id")'
        ]

    def test_foreign_key_with_actions(self, postgres_traits):
        op = _fk(on_delete="cascade", on_update="set null")

        assert DdlRenderer(postgres_traits).render(op) == [
            'ALTER TABLE "posts" ADD CONSTRAINT "fk_posts_user_id" FOREIGN KEY ("user_id") '
            'REFERENCES "users" ("id") ON DELETE CASCADE ON UPDATE SET NULL'
        ]

    def test_foreign_key_without_actions(self, mysql_traits):
        assert DdlRenderer(mysql_traits).render(_fk()) == [
            "ALTER TABLE `posts` ADD CONSTRAINT `fk_posts_user_id` FOREIGN KEY (`user_id`) "
            "REFERENCES `users` (`id`)"
        ]

    @pytest.mark.parametrize(
        "op",
        [
            _fk(),
            DropForeignKeyConstraintOperation(table="posts", name="fk"),
            CreatePrimaryKeyConstraintOperation(table="posts", name="pk", columns=["id"]),
            DropUniqueConstraintOperation(table="posts", name="uq"),
        ],
    )
    def test_sqlite_cannot_alter_constraints(self, sqlite_traits, op):
        with pytest.raises(UnsupportedOperationError):
            DdlRenderer(sqlite_traits).render(op)
