"""
Tests for dbdelta.database.dialects module.
"""

import pytest

from dbdelta.exceptions import DatabaseConfigurationError, IntrospectionError, UnknownTypeError
from dbdelta.database.dialects import (
    CockroachIntrospectionDriver,
    Dialect,
    MariadbIntrospectionDriver,
    MysqlIntrospectionDriver,
    PostgresIntrospectionDriver,
    SqliteIntrospectionDriver,
    assemble_constraints,
    assemble_indexes,
    assemble_tables,
    create_introspection_driver,
    get_dialect_traits,
    make_type_converter,
    normalize_mariadb_default,
    parse_referential_action,
)
from dbdelta.database.introspection import SchemaIntrospector
from dbdelta.schema.snapshot import ReferentialAction, SchemaSnapshot


# ============================================================================
# Traits and type names
# ============================================================================


class TestDialectTraits:
    """Test get_dialect_traits."""

    def test_known_dialects(self):
        for dialect in Dialect:
            assert get_dialect_traits(dialect.value).dialect == dialect

    def test_unknown_dialect(self):
        with pytest.raises(DatabaseConfigurationError) as exc_info:
            get_dialect_traits("oracle")

        assert "postgres" in exc_info.value.details["supported"]

    def test_capabilities(self):
        postgres = get_dialect_traits("postgres")
        mysql = get_dialect_traits("mysql")
        sqlite = get_dialect_traits("sqlite")

        assert postgres.supports_transactional_ddl is True
        assert mysql.supports_transactional_ddl is False
        assert mysql.identifier_quote == "`"
        assert sqlite.alter_column_style is None
        assert sqlite.supports_constraint_alter is False
        assert get_dialect_traits("cockroachdb").index_drop_style == "table_at"

    def test_placeholders(self):
        assert get_dialect_traits("postgres").placeholder(2) == "$2"
        assert get_dialect_traits("mariadb").placeholder(2) == "%s"
        assert get_dialect_traits("sqlite").placeholder(2) == "?"


class TestTypeConverter:
    """Test make_type_converter."""

    def test_postgres_synonyms(self, postgres_traits):
        convert = make_type_converter(postgres_traits)

        assert convert("character varying(255)") == "varchar(255)"
        assert convert("INT4") == "integer"
        assert convert("timestamp with time zone") == "timestamptz"
        assert convert("numeric(10, 2)") == "numeric(10,2)"
        assert convert("text[]") == "text[]"

    def test_unknown_type_rejected(self, postgres_traits):
        convert = make_type_converter(postgres_traits)

        with pytest.raises(UnknownTypeError) as exc_info:
            convert("mood")

        assert exc_info.value.dialect == "postgres"

    def test_extra_types_accepted(self, postgres_traits):
        convert = make_type_converter(postgres_traits, extra_types=["Mood"])

        assert convert("mood") == "mood"

    def test_cockroach_integers_are_64_bit(self, cockroach_traits):
        convert = make_type_converter(cockroach_traits)

        assert convert("INT8") == "bigint"
        assert convert("integer") == "bigint"
        assert convert("STRING") == "text"

    def test_mysql_display_widths(self, mysql_traits):
        convert = make_type_converter(mysql_traits)

        assert convert("int(11)") == "int"
        assert convert("tinyint(1)") == "boolean"
        assert convert("int unsigned") == "int unsigned"
        assert convert("varchar(100)") == "varchar(100)"

    def test_mariadb_json_is_longtext(self, mariadb_traits):
        assert make_type_converter(mariadb_traits)("json") == "longtext"

    def test_sqlite_accepts_any_type(self, sqlite_traits):
        assert make_type_converter(sqlite_traits)("Whatever") == "whatever"


class TestReferentialActions:
    """Test parse_referential_action."""

    @pytest.mark.parametrize(
        "token,expected",
        [
            (None, None),
            ("a", None),
            ("NO ACTION", None),
            ("c", ReferentialAction.CASCADE),
            ("CASCADE", ReferentialAction.CASCADE),
            ("n", ReferentialAction.SET_NULL),
            ("SET_NULL", ReferentialAction.SET_NULL),
            ("set default", ReferentialAction.SET_DEFAULT),
            ("RESTRICT", ReferentialAction.RESTRICT),
        ],
    )
    def test_tokens(self, token, expected):
        assert parse_referential_action(token) == expected

    def test_unknown_token(self):
        with pytest.raises(IntrospectionError):
            parse_referential_action("explode")


# ============================================================================
# Row assembly
# ============================================================================


class TestAssembly:
    """Test the shared row assembly helpers."""

    def test_assemble_tables_keeps_column_order(self):
        rows = [
            {"table_name": "users", "column_name": "id", "data_type": "INTEGER",
             "not_null": True, "default_sql": None},
            {"table_name": "users", "column_name": "name", "data_type": "TEXT",
             "not_null": "NO", "default_sql": "'anon'"},
            {"table_name": "teams", "column_name": "id", "data_type": "INTEGER",
             "not_null": 1, "default_sql": None},
        ]

        tables = assemble_tables(rows, str.lower)

        assert [t.name for t in tables] == ["users", "teams"]
        users = tables[0]
        assert list(users.columns) == ["id", "name"]
        assert users.columns["id"].not_null is True
        assert users.columns["name"].not_null is False
        assert users.columns["name"].default_sql == "'anon'"
        assert tables[1].columns["id"].not_null is True

    def test_assemble_indexes_groups_columns(self):
        rows = [
            {"table_name": "people", "index_name": "idx_name_age", "is_unique": False,
             "column_name": "name"},
            {"table_name": "people", "index_name": "idx_name_age", "is_unique": False,
             "column_name": "age"},
        ]

        (index,) = assemble_indexes(rows)

        assert index.columns == ("name", "age")
        assert index.unique is False

    def test_assemble_constraints(self):
        rows = [
            {"table_name": "users", "constraint_name": "users_pkey", "constraint_type": "p",
             "column_name": "id"},
            {"table_name": "users", "constraint_name": "users_email_key",
             "constraint_type": "u", "column_name": "email"},
            {"table_name": "posts", "constraint_name": "fk_posts_user_id",
             "constraint_type": "f", "column_name": "user_id", "referenced_table": "users",
             "referenced_column": "id", "on_delete": "c", "on_update": "a"},
        ]

        result = assemble_constraints(rows)

        assert result.primary_key[0].name == "users_pkey"
        assert result.unique[0].columns == ("email",)
        fk = result.foreign_key[0]
        assert fk.referenced_table == "users"
        assert fk.referenced_columns == ("id",)
        assert fk.on_delete == ReferentialAction.CASCADE
        assert fk.on_update is None

    def test_unknown_constraint_type(self):
        rows = [{"table_name": "t", "constraint_name": "c", "constraint_type": "x",
                 "column_name": "a"}]

        with pytest.raises(IntrospectionError):
            assemble_constraints(rows)

    def test_mariadb_null_default(self):
        assert normalize_mariadb_default("NULL") is None
        assert normalize_mariadb_default(None) is None
        assert normalize_mariadb_default("'NULL'") == "'NULL'"
        assert normalize_mariadb_default("0") == "0"


# ============================================================================
# Drivers
# ============================================================================


class TestPostgresDriver:
    """Test PostgresIntrospectionDriver against canned catalog rows."""

    @pytest.mark.asyncio
    async def test_full_introspection(self, mock_session):
        mock_session.fetch.side_effect = [
            [
                {"table_name": "users", "column_name": "id", "data_type": "integer",
                 "not_null": True, "default_sql": None},
                {"table_name": "users", "column_name": "email",
                 "data_type": "character varying(255)", "not_null": False,
                 "default_sql": None},
            ],
            [
                {"table_name": "users", "index_name": "idx_users_email", "is_unique": False,
                 "column_name": "email"},
            ],
            [
                {"table_name": "users", "constraint_name": "users_pkey",
                 "constraint_type": "p", "column_name": "id"},
            ],
        ]
        driver = PostgresIntrospectionDriver(mock_session)

        snapshot = await SchemaIntrospector(driver).introspect(SchemaSnapshot())

        users = snapshot.get_table("users")
        assert users.columns["email"].type == "varchar(255)"
        assert users.columns["id"].primary_key is True
        assert snapshot.indexes[0].name == "idx_users_email"
        assert snapshot.primary_key_constraints[0].name == "users_pkey"
        assert mock_session.fetch.await_count == 3


class TestCockroachDriver:
    """Test CockroachIntrospectionDriver."""

    @pytest.mark.asyncio
    async def test_rowid_column_excluded(self, mock_session):
        mock_session.fetch.return_value = [
            {"table_name": "events", "column_name": "payload", "data_type": "JSONB",
             "not_null": False, "default_sql": None},
            {"table_name": "events", "column_name": "rowid", "data_type": "INT8",
             "not_null": True, "default_sql": "unique_rowid()"},
        ]

        (table,) = await CockroachIntrospectionDriver(mock_session).introspect_tables()

        assert list(table.columns) == ["payload"]
        assert table.columns["payload"].type == "jsonb"


class TestMysqlDrivers:
    """Test the MySQL and MariaDB drivers."""

    CONSTRAINT_ROWS = [
        {"table_name": "posts", "constraint_name": "PRIMARY",
         "constraint_type": "PRIMARY KEY", "column_name": "id", "referenced_table": None,
         "referenced_column": None, "on_delete": None, "on_update": None},
        {"table_name": "posts", "constraint_name": "fk_posts_user_id",
         "constraint_type": "FOREIGN KEY", "column_name": "user_id",
         "referenced_table": "users", "referenced_column": "id",
         "on_delete": "CASCADE", "on_update": "NO ACTION"},
    ]

    @pytest.mark.asyncio
    async def test_primary_key_named_by_convention(self, mock_session):
        mock_session.fetch.return_value = self.CONSTRAINT_ROWS
        driver = MysqlIntrospectionDriver(mock_session)

        constraints = await driver.introspect_constraints()

        assert constraints.primary_key[0].name == "posts_id_primary_key"
        assert constraints.foreign_key[0].on_delete == ReferentialAction.CASCADE
        assert constraints.foreign_key[0].on_update is None

    @pytest.mark.asyncio
    async def test_foreign_key_backing_index_is_implicit(self, mock_session):
        mock_session.fetch.return_value = self.CONSTRAINT_ROWS
        driver = MysqlIntrospectionDriver(mock_session)

        constraints = await driver.introspect_constraints()

        assert driver.implicit_index_keys(constraints) == {("posts", "fk_posts_user_id")}

    @pytest.mark.asyncio
    async def test_mariadb_normalizes_defaults_and_json(self, mock_session):
        mock_session.fetch.return_value = [
            {"table_name": "docs", "column_name": "body", "data_type": "longtext",
             "not_null": 0, "default_sql": "NULL"},
        ]

        (table,) = await MariadbIntrospectionDriver(mock_session).introspect_tables()

        assert table.columns["body"].default_sql is None
        assert table.columns["body"].type == "longtext"


class TestSqliteDriver:
    """Test SqliteIntrospectionDriver against canned PRAGMA rows."""

    COLUMNS = {
        "users": [
            {"name": "id", "type": "INTEGER", "not_null": 1, "dflt_value": None, "pk": 1},
            {"name": "email", "type": "TEXT", "not_null": 1, "dflt_value": None, "pk": 0},
        ],
        "posts": [
            {"name": "id", "type": "INTEGER", "not_null": 0, "dflt_value": None, "pk": 1},
            {"name": "user_id", "type": "INTEGER", "not_null": 1, "dflt_value": None,
             "pk": 0},
        ],
    }
    INDEX_LIST = {
        "users": [
            {"name": "sqlite_autoindex_users_1", "is_unique": 1, "origin": "u"},
        ],
        "posts": [
            {"name": "idx_posts_user_id", "is_unique": 0, "origin": "c"},
        ],
    }
    INDEX_COLUMNS = {
        "sqlite_autoindex_users_1": [{"name": "email"}],
        "idx_posts_user_id": [{"name": "user_id"}],
    }
    FOREIGN_KEYS = {
        "users": [],
        "posts": [
            {"id": 0, "seq": 0, "referenced_table": "users", "column_name": "user_id",
             "referenced_column": "id", "on_update": "NO ACTION", "on_delete": "CASCADE"},
        ],
    }

    @pytest.fixture
    def sqlite_session(self, mock_session):
        async def fetch(query, *args):
            if "sqlite_master" in query:
                return [{"name": "posts"}, {"name": "users"}]
            if "pragma_table_info" in query:
                return self.COLUMNS[args[0]]
            if "pragma_index_list" in query:
                return self.INDEX_LIST[args[0]]
            if "pragma_index_info" in query:
                return self.INDEX_COLUMNS[args[0]]
            if "pragma_foreign_key_list" in query:
                return self.FOREIGN_KEYS[args[0]]
            raise AssertionError(f"unexpected query: {query}")

        mock_session.fetch.side_effect = fetch
        return mock_session

    @pytest.mark.asyncio
    async def test_only_explicit_indexes_reported(self, sqlite_session):
        indexes = await SqliteIntrospectionDriver(sqlite_session).introspect_indexes()

        assert [(i.table, i.name, i.columns) for i in indexes] == [
            ("posts", "idx_posts_user_id", ("user_id",))
        ]

    @pytest.mark.asyncio
    async def test_constraints_named_by_convention(self, sqlite_session):
        constraints = await SqliteIntrospectionDriver(sqlite_session).introspect_constraints()

        assert [c.name for c in constraints.primary_key] == [
            "posts_id_primary_key",
            "users_id_primary_key",
        ]
        assert [c.name for c in constraints.unique] == ["users_email_unique"]
        fk = constraints.foreign_key[0]
        assert fk.name == "fk_posts_user_id"
        assert fk.on_delete == ReferentialAction.CASCADE
        assert fk.on_update is None

    @pytest.mark.asyncio
    async def test_declared_types_lowercased(self, sqlite_session):
        tables = await SqliteIntrospectionDriver(sqlite_session).introspect_tables()

        assert [t.name for t in tables] == ["posts", "users"]
        assert tables[1].columns["email"].type == "text"
        assert tables[1].columns["email"].not_null is True


class TestDriverFactory:
    """Test create_introspection_driver."""

    @pytest.mark.parametrize(
        "dialect,driver_class",
        [
            ("postgres", PostgresIntrospectionDriver),
            ("cockroachdb", CockroachIntrospectionDriver),
            ("mysql", MysqlIntrospectionDriver),
            ("mariadb", MariadbIntrospectionDriver),
            ("sqlite", SqliteIntrospectionDriver),
        ],
    )
    def test_driver_per_dialect(self, mock_session, dialect, driver_class):
        driver = create_introspection_driver(dialect, mock_session)

        assert isinstance(driver, driver_class)
        assert driver.dialect == dialect

    def test_unknown_dialect(self, mock_session):
        with pytest.raises(DatabaseConfigurationError):
            create_introspection_driver("oracle", mock_session)
