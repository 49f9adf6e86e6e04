"""
Dialect capabilities and introspection drivers.

Each supported dialect is described by a ``DialectTraits`` capability set
(quoting, DDL forms, transactional DDL, locking, type tables) and gets one
introspection driver class. Catalog queries are module-level functions that
the drivers compose; the drivers do not inherit from each other.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from ..exceptions import DatabaseConfigurationError, IntrospectionError
from ..naming import (
    foreign_key_constraint_name,
    primary_key_constraint_name,
    unique_constraint_name,
)
from ..schema.snapshot import (
    ColumnDefinition,
    ForeignKeyConstraint,
    IndexDefinition,
    PrimaryKeyConstraint,
    ReferentialAction,
    TableSnapshot,
    UniqueConstraint,
    normalize_type_name,
)
from .introspection import (
    FOREIGN_KEY,
    PRIMARY_KEY,
    UNIQUE,
    IntrospectedConstraints,
)

if TYPE_CHECKING:
    from .connection import DatabaseSession


logger = logging.getLogger(__name__)


class Dialect(str, Enum):
    """Supported SQL dialects."""

    POSTGRES = "postgres"
    COCKROACHDB = "cockroachdb"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class DialectTraits:
    """
    What a dialect can express and how.

    alter_column_style:
        ``"alter"`` for ALTER COLUMN TYPE / SET NOT NULL / SET DEFAULT,
        ``"modify"`` for MODIFY COLUMN with the full definition, ``None``
        when columns cannot be altered in place.
    index_drop_style:
        ``"standalone"`` (DROP INDEX n), ``"on_table"`` (DROP INDEX n ON t)
        or ``"table_at"`` (DROP INDEX t@n).
    constraint_drop_style:
        ``"constraint"`` (DROP CONSTRAINT n) or ``"keyword"`` (DROP PRIMARY
        KEY, DROP INDEX n, DROP FOREIGN KEY n).
    lock_style:
        ``"advisory"`` (pg_advisory_lock), ``"get_lock"`` (GET_LOCK) or
        ``None``.
    param_style:
        Bind parameter markers: ``"numeric"`` ($1), ``"format"`` (%s) or
        ``"qmark"`` (?).
    """

    dialect: Dialect
    identifier_quote: str = '"'
    alter_column_style: Optional[str] = "alter"
    index_drop_style: str = "standalone"
    constraint_drop_style: str = "constraint"
    drop_unique_via_index: bool = False
    supports_constraint_alter: bool = True
    supports_transactional_ddl: bool = True
    lock_style: Optional[str] = None
    param_style: str = "numeric"
    type_synonyms: Mapping[str, str] = field(default_factory=dict)
    known_types: Optional[FrozenSet[str]] = None

    def placeholder(self, position: int) -> str:
        """Bind parameter marker for a 1-based position."""
        if self.param_style == "format":
            return "%s"
        if self.param_style == "qmark":
            return "?"
        return f"${position}"


POSTGRES_TYPE_SYNONYMS = {
    "bool": "boolean",
    "int2": "smallint",
    "int4": "integer",
    "int8": "bigint",
    "int": "integer",
    "character varying": "varchar",
    "character": "char",
    "float4": "real",
    "float8": "double precision",
    "float": "double precision",
    "decimal": "numeric",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "time with time zone": "timetz",
    "bit varying": "varbit",
}

POSTGRES_KNOWN_TYPES = frozenset(
    {
        "smallint", "integer", "bigint", "real", "double precision", "numeric",
        "boolean", "text", "varchar", "char", "bytea", "date", "time", "timetz",
        "timestamp", "timestamptz", "interval", "uuid", "json", "jsonb", "xml",
        "inet", "cidr", "macaddr", "macaddr8", "money", "bit", "varbit",
        "tsvector", "tsquery", "point", "line", "lseg", "box", "path",
        "polygon", "circle", "oid",
    }
)

# INT and INTEGER are 64-bit in CockroachDB; types are read from crdb_sql_type
COCKROACH_TYPE_SYNONYMS = {
    "bool": "boolean",
    "string": "text",
    "int": "bigint",
    "integer": "bigint",
    "int8": "bigint",
    "int64": "bigint",
    "int2": "smallint",
    "character varying": "varchar",
    "character": "char",
    "float4": "real",
    "float8": "double precision",
    "float": "double precision",
    "decimal": "numeric",
    "json": "jsonb",
    "bytes": "bytea",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "time with time zone": "timetz",
}

COCKROACH_KNOWN_TYPES = frozenset(
    {
        "smallint", "int4", "bigint", "real", "double precision", "numeric",
        "boolean", "text", "varchar", "char", "bytea", "date", "time", "timetz",
        "timestamp", "timestamptz", "interval", "uuid", "jsonb", "inet", "bit",
        "varbit",
    }
)

MYSQL_TYPE_SYNONYMS = {
    "tinyint(1)": "boolean",
    "bool": "boolean",
    "integer": "int",
    "int(11)": "int",
    "int(10) unsigned": "int unsigned",
    "bigint(20)": "bigint",
    "bigint(20) unsigned": "bigint unsigned",
    "smallint(6)": "smallint",
    "mediumint(9)": "mediumint",
    "tinyint(4)": "tinyint",
    "character varying": "varchar",
    "character": "char",
    "double precision": "double",
    "real": "double",
    "numeric": "decimal",
    "dec": "decimal",
}

_MYSQL_INTEGER_TYPES = ("tinyint", "smallint", "mediumint", "int", "bigint")

MYSQL_KNOWN_TYPES = frozenset(
    set(_MYSQL_INTEGER_TYPES)
    | {f"{name} unsigned" for name in _MYSQL_INTEGER_TYPES}
    | {
        "decimal", "float", "double", "bit", "boolean", "char", "varchar",
        "binary", "varbinary", "tinytext", "text", "mediumtext", "longtext",
        "tinyblob", "blob", "mediumblob", "longblob", "date", "time",
        "datetime", "timestamp", "year", "json", "enum", "set", "geometry",
        "point",
    }
)

# MariaDB stores JSON as LONGTEXT with a check constraint
MARIADB_TYPE_SYNONYMS = dict(MYSQL_TYPE_SYNONYMS, json="longtext")

MARIADB_KNOWN_TYPES = frozenset(
    (MYSQL_KNOWN_TYPES - {"json"}) | {"uuid", "inet4", "inet6"}
)

SQLITE_TYPE_SYNONYMS = {
    "bool": "boolean",
    "int": "integer",
}


DIALECT_TRAITS: Dict[Dialect, DialectTraits] = {
    Dialect.POSTGRES: DialectTraits(
        dialect=Dialect.POSTGRES,
        lock_style="advisory",
        type_synonyms=POSTGRES_TYPE_SYNONYMS,
        known_types=POSTGRES_KNOWN_TYPES,
    ),
    Dialect.COCKROACHDB: DialectTraits(
        dialect=Dialect.COCKROACHDB,
        index_drop_style="table_at",
        drop_unique_via_index=True,
        type_synonyms=COCKROACH_TYPE_SYNONYMS,
        known_types=COCKROACH_KNOWN_TYPES,
    ),
    Dialect.MYSQL: DialectTraits(
        dialect=Dialect.MYSQL,
        identifier_quote="`",
        alter_column_style="modify",
        index_drop_style="on_table",
        constraint_drop_style="keyword",
        supports_transactional_ddl=False,
        lock_style="get_lock",
        param_style="format",
        type_synonyms=MYSQL_TYPE_SYNONYMS,
        known_types=MYSQL_KNOWN_TYPES,
    ),
    Dialect.MARIADB: DialectTraits(
        dialect=Dialect.MARIADB,
        identifier_quote="`",
        alter_column_style="modify",
        index_drop_style="on_table",
        constraint_drop_style="keyword",
        supports_transactional_ddl=False,
        lock_style="get_lock",
        param_style="format",
        type_synonyms=MARIADB_TYPE_SYNONYMS,
        known_types=MARIADB_KNOWN_TYPES,
    ),
    Dialect.SQLITE: DialectTraits(
        dialect=Dialect.SQLITE,
        alter_column_style=None,
        supports_constraint_alter=False,
        param_style="qmark",
        type_synonyms=SQLITE_TYPE_SYNONYMS,
        known_types=None,
    ),
}


def get_dialect_traits(dialect: str) -> DialectTraits:
    """Get the capability set for a dialect name."""
    try:
        return DIALECT_TRAITS[Dialect(dialect)]
    except ValueError as e:
        supported = ", ".join(d.value for d in Dialect)
        raise DatabaseConfigurationError(
            f"Unsupported dialect: {dialect}", {"supported": supported}
        ) from e


def make_type_converter(
    traits: DialectTraits, extra_types: Iterable[str] = ()
) -> Callable[[str], str]:
    """
    Build the ``convert_type_name`` function for a dialect.

    ``extra_types`` (user-defined enums and domains) extend the known set.
    """
    known: Optional[FrozenSet[str]] = None
    if traits.known_types is not None:
        known = traits.known_types | {
            " ".join(name.lower().split()) for name in extra_types
        }

    def convert_type_name(type_name: str) -> str:
        return normalize_type_name(
            type_name,
            synonyms=traits.type_synonyms,
            known_types=known,
            dialect=traits.dialect.value,
        )

    return convert_type_name


_ACTION_TOKENS = {
    # pg_constraint.confdeltype / confupdtype codes
    "a": None,
    "r": ReferentialAction.RESTRICT,
    "c": ReferentialAction.CASCADE,
    "n": ReferentialAction.SET_NULL,
    "d": ReferentialAction.SET_DEFAULT,
    # information_schema / PRAGMA spellings
    "no action": None,
    "restrict": ReferentialAction.RESTRICT,
    "cascade": ReferentialAction.CASCADE,
    "set null": ReferentialAction.SET_NULL,
    "set default": ReferentialAction.SET_DEFAULT,
}


def parse_referential_action(token: Optional[str]) -> Optional[ReferentialAction]:
    """
    Map a catalog referential-action token onto the closed set.

    NO ACTION is every dialect's default and is reported as ``None``.

    Raises:
        IntrospectionError: for a token outside the known spellings.
    """
    if token is None:
        return None
    key = " ".join(str(token).strip().lower().replace("_", " ").split())
    if key not in _ACTION_TOKENS:
        raise IntrospectionError(f"Unrecognised referential action: {token!r}")
    return _ACTION_TOKENS[key]


def _is_true(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "TRUE", "T", "1")
    return bool(value)


# Row assembly shared by the drivers


def assemble_tables(
    rows: Iterable[Mapping[str, Any]],
    convert_type_name: Callable[[str], str],
    normalize_default: Callable[[Optional[str]], Optional[str]] = lambda v: v,
) -> List[TableSnapshot]:
    """
    Group column rows into tables.

    Rows carry table_name, column_name, data_type, not_null and default_sql,
    ordered by table then column position.
    """
    columns: Dict[str, Dict[str, ColumnDefinition]] = {}
    for row in rows:
        columns.setdefault(row["table_name"], {})[row["column_name"]] = ColumnDefinition(
            type=convert_type_name(row["data_type"]),
            not_null=_is_true(row["not_null"]),
            default_sql=normalize_default(row["default_sql"]),
        )
    return [TableSnapshot(name=name, columns=cols) for name, cols in columns.items()]


def assemble_indexes(rows: Iterable[Mapping[str, Any]]) -> List[IndexDefinition]:
    """Group index rows (table_name, index_name, is_unique, column_name) in column order."""
    grouped: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for row in rows:
        key = (row["table_name"], row["index_name"])
        entry = grouped.setdefault(key, {"unique": _is_true(row["is_unique"]), "columns": []})
        entry["columns"].append(row["column_name"])
    return [
        IndexDefinition(table=table, name=name, columns=entry["columns"], unique=entry["unique"])
        for (table, name), entry in grouped.items()
    ]


def assemble_constraints(
    rows: Iterable[Mapping[str, Any]],
    primary_key_name: Optional[Callable[[str, List[str]], str]] = None,
) -> IntrospectedConstraints:
    """
    Group constraint rows in column order.

    ``constraint_type`` is one of ``p``, ``u``, ``f`` (pg_constraint codes)
    or the information_schema spelling. ``primary_key_name`` replaces the
    reported name for catalogs without primary key names.
    """
    grouped: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for row in rows:
        key = (row["table_name"], row["constraint_name"])
        entry = grouped.setdefault(
            key,
            {
                "kind": _constraint_kind(row["constraint_type"]),
                "columns": [],
                "referenced_table": row.get("referenced_table"),
                "referenced_columns": [],
                "on_delete": row.get("on_delete"),
                "on_update": row.get("on_update"),
            },
        )
        entry["columns"].append(row["column_name"])
        if entry["kind"] == FOREIGN_KEY:
            entry["referenced_columns"].append(row["referenced_column"])

    result = IntrospectedConstraints()
    for (table, name), entry in grouped.items():
        if entry["kind"] == PRIMARY_KEY:
            if primary_key_name is not None:
                name = primary_key_name(table, entry["columns"])
            result.primary_key.append(
                PrimaryKeyConstraint(table=table, name=name, columns=entry["columns"])
            )
        elif entry["kind"] == UNIQUE:
            result.unique.append(
                UniqueConstraint(table=table, name=name, columns=entry["columns"])
            )
        else:
            result.foreign_key.append(
                ForeignKeyConstraint(
                    table=table,
                    name=name,
                    columns=entry["columns"],
                    referenced_table=entry["referenced_table"],
                    referenced_columns=entry["referenced_columns"],
                    on_delete=parse_referential_action(entry["on_delete"]),
                    on_update=parse_referential_action(entry["on_update"]),
                )
            )
    return result


def _constraint_kind(token: str) -> str:
    normalized = token.strip().lower()
    if normalized in ("p", "primary key"):
        return PRIMARY_KEY
    if normalized in ("u", "unique"):
        return UNIQUE
    if normalized in ("f", "foreign key"):
        return FOREIGN_KEY
    raise IntrospectionError(f"Unrecognised constraint type: {token!r}")


# pg_catalog queries (postgres; constraints also on cockroachdb)


async def fetch_pg_columns(session: "DatabaseSession") -> List[Dict[str, Any]]:
    query = """
        SELECT
            c.relname AS table_name,
            a.attname AS column_name,
            format_type(a.atttypid, a.atttypmod) AS data_type,
            a.attnotnull AS not_null,
            pg_get_expr(d.adbin, d.adrelid) AS default_sql
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum > 0 AND NOT a.attisdropped
        LEFT JOIN pg_attrdef d ON d.adrelid = c.oid AND d.adnum = a.attnum
        WHERE n.nspname = current_schema()
        AND c.relkind IN ('r', 'p')
        ORDER BY c.relname, a.attnum
    """
    return await session.fetch(query)


async def fetch_pg_indexes(session: "DatabaseSession") -> List[Dict[str, Any]]:
    """Indexes not backing a primary key or unique constraint."""
    query = """
        SELECT
            t.relname AS table_name,
            i.relname AS index_name,
            ix.indisunique AS is_unique,
            a.attname AS column_name
        FROM pg_index ix
        JOIN pg_class i ON i.oid = ix.indexrelid
        JOIN pg_class t ON t.oid = ix.indrelid
        JOIN pg_namespace n ON n.oid = t.relnamespace
        JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
        WHERE n.nspname = current_schema()
        AND NOT ix.indisprimary
        AND NOT EXISTS (
            SELECT 1 FROM pg_constraint con
            WHERE con.conindid = ix.indexrelid
            AND con.contype IN ('p', 'u')
        )
        ORDER BY t.relname, i.relname, array_position(ix.indkey::int2[], a.attnum)
    """
    return await session.fetch(query)


async def fetch_pg_constraints(session: "DatabaseSession") -> List[Dict[str, Any]]:
    query = """
        SELECT
            t.relname AS table_name,
            con.conname AS constraint_name,
            con.contype::text AS constraint_type,
            a.attname AS column_name,
            rt.relname AS referenced_table,
            ra.attname AS referenced_column,
            CASE WHEN con.contype = 'f' THEN con.confdeltype::text END AS on_delete,
            CASE WHEN con.contype = 'f' THEN con.confupdtype::text END AS on_update
        FROM pg_constraint con
        JOIN pg_class t ON t.oid = con.conrelid
        JOIN pg_namespace n ON n.oid = t.relnamespace
        CROSS JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS k(attnum, ordinality)
        JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
        LEFT JOIN pg_class rt ON rt.oid = con.confrelid
        LEFT JOIN pg_attribute ra
            ON ra.attrelid = con.confrelid AND ra.attnum = con.confkey[k.ordinality::int]
        WHERE n.nspname = current_schema()
        AND con.contype IN ('p', 'u', 'f')
        ORDER BY t.relname, con.conname, k.ordinality
    """
    return await session.fetch(query)


# CockroachDB information_schema queries


async def fetch_cockroach_columns(session: "DatabaseSession") -> List[Dict[str, Any]]:
    """Visible columns only; the hidden rowid column is excluded."""
    query = """
        SELECT
            c.table_name,
            c.column_name,
            c.crdb_sql_type AS data_type,
            c.is_nullable = 'NO' AS not_null,
            c.column_default AS default_sql
        FROM information_schema.columns c
        JOIN information_schema.tables t
            ON t.table_schema = c.table_schema AND t.table_name = c.table_name
        WHERE c.table_schema = current_schema()
        AND t.table_type = 'BASE TABLE'
        AND c.is_hidden = 'NO'
        ORDER BY c.table_name, c.ordinal_position
    """
    return await session.fetch(query)


async def fetch_cockroach_indexes(session: "DatabaseSession") -> List[Dict[str, Any]]:
    """Secondary indexes; the primary index and stored columns are excluded."""
    query = """
        SELECT
            s.table_name,
            s.index_name,
            s.non_unique = 'NO' AS is_unique,
            s.column_name
        FROM information_schema.statistics s
        WHERE s.table_schema = current_schema()
        AND s.storing = 'NO'
        AND s.implicit = 'NO'
        AND NOT EXISTS (
            SELECT 1 FROM information_schema.table_constraints tc
            WHERE tc.table_schema = s.table_schema
            AND tc.table_name = s.table_name
            AND tc.constraint_name = s.index_name
            AND tc.constraint_type = 'PRIMARY KEY'
        )
        ORDER BY s.table_name, s.index_name, s.seq_in_index
    """
    return await session.fetch(query)


# MySQL / MariaDB information_schema queries


async def fetch_mysql_columns(session: "DatabaseSession") -> List[Dict[str, Any]]:
    query = """
        SELECT
            c.TABLE_NAME AS table_name,
            c.COLUMN_NAME AS column_name,
            c.COLUMN_TYPE AS data_type,
            c.IS_NULLABLE = 'NO' AS not_null,
            c.COLUMN_DEFAULT AS default_sql
        FROM information_schema.COLUMNS c
        JOIN information_schema.TABLES t
            ON t.TABLE_SCHEMA = c.TABLE_SCHEMA AND t.TABLE_NAME = c.TABLE_NAME
        WHERE c.TABLE_SCHEMA = DATABASE()
        AND t.TABLE_TYPE = 'BASE TABLE'
        ORDER BY c.TABLE_NAME, c.ORDINAL_POSITION
    """
    return await session.fetch(query)


async def fetch_mysql_indexes(session: "DatabaseSession") -> List[Dict[str, Any]]:
    query = """
        SELECT
            TABLE_NAME AS table_name,
            INDEX_NAME AS index_name,
            NON_UNIQUE = 0 AS is_unique,
            COLUMN_NAME AS column_name
        FROM information_schema.STATISTICS
        WHERE TABLE_SCHEMA = DATABASE()
        AND INDEX_NAME <> 'PRIMARY'
        ORDER BY TABLE_NAME, INDEX_NAME, SEQ_IN_INDEX
    """
    return await session.fetch(query)


async def fetch_mysql_constraints(session: "DatabaseSession") -> List[Dict[str, Any]]:
    query = """
        SELECT
            tc.TABLE_NAME AS table_name,
            tc.CONSTRAINT_NAME AS constraint_name,
            tc.CONSTRAINT_TYPE AS constraint_type,
            kcu.COLUMN_NAME AS column_name,
            kcu.REFERENCED_TABLE_NAME AS referenced_table,
            kcu.REFERENCED_COLUMN_NAME AS referenced_column,
            rc.DELETE_RULE AS on_delete,
            rc.UPDATE_RULE AS on_update
        FROM information_schema.TABLE_CONSTRAINTS tc
        JOIN information_schema.KEY_COLUMN_USAGE kcu
            ON kcu.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA
            AND kcu.TABLE_NAME = tc.TABLE_NAME
            AND kcu.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
        LEFT JOIN information_schema.REFERENTIAL_CONSTRAINTS rc
            ON rc.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA
            AND rc.TABLE_NAME = tc.TABLE_NAME
            AND rc.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
        WHERE tc.TABLE_SCHEMA = DATABASE()
        AND tc.CONSTRAINT_TYPE IN ('PRIMARY KEY', 'UNIQUE', 'FOREIGN KEY')
        ORDER BY tc.TABLE_NAME, tc.CONSTRAINT_NAME, kcu.ORDINAL_POSITION
    """
    return await session.fetch(query)


def mysql_implicit_index_keys(constraints: IntrospectedConstraints) -> Set[Tuple[str, str]]:
    """MySQL backs each foreign key with an index of the same name."""
    return {fk.key for fk in constraints.foreign_key}


def normalize_mariadb_default(value: Optional[str]) -> Optional[str]:
    """MariaDB reports a missing default as the literal string NULL."""
    if value is None or value.strip().upper() == "NULL":
        return None
    return value


# SQLite catalog queries


async def fetch_sqlite_table_names(session: "DatabaseSession") -> List[str]:
    rows = await session.fetch(
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' "
        "ORDER BY name"
    )
    return [row["name"] for row in rows]


async def fetch_sqlite_columns(session: "DatabaseSession", table: str) -> List[Dict[str, Any]]:
    return await session.fetch(
        'SELECT name, type, "notnull" AS not_null, dflt_value, pk '
        "FROM pragma_table_info(?) ORDER BY cid",
        table,
    )


async def fetch_sqlite_index_list(session: "DatabaseSession", table: str) -> List[Dict[str, Any]]:
    return await session.fetch(
        'SELECT name, "unique" AS is_unique, origin FROM pragma_index_list(?) ORDER BY name',
        table,
    )


async def fetch_sqlite_index_columns(session: "DatabaseSession", index: str) -> List[str]:
    rows = await session.fetch(
        "SELECT name FROM pragma_index_info(?) ORDER BY seqno", index
    )
    return [row["name"] for row in rows]


async def fetch_sqlite_foreign_keys(session: "DatabaseSession", table: str) -> List[Dict[str, Any]]:
    return await session.fetch(
        'SELECT id, seq, "table" AS referenced_table, "from" AS column_name, '
        '"to" AS referenced_column, on_update, on_delete '
        "FROM pragma_foreign_key_list(?) ORDER BY id, seq",
        table,
    )


class PostgresIntrospectionDriver:
    """PostgreSQL catalog access through pg_catalog."""

    dialect = Dialect.POSTGRES.value
    unnamed_constraint_kinds: FrozenSet[str] = frozenset()

    def __init__(self, session: "DatabaseSession", extra_types: Iterable[str] = ()):
        self.session = session
        self.traits = DIALECT_TRAITS[Dialect.POSTGRES]
        self._convert = make_type_converter(self.traits, extra_types)

    async def introspect_tables(self) -> List[TableSnapshot]:
        return assemble_tables(await fetch_pg_columns(self.session), self.convert_type_name)

    async def introspect_indexes(self) -> List[IndexDefinition]:
        return assemble_indexes(await fetch_pg_indexes(self.session))

    async def introspect_constraints(self) -> IntrospectedConstraints:
        return assemble_constraints(await fetch_pg_constraints(self.session))

    def convert_type_name(self, type_name: str) -> str:
        return self._convert(type_name)

    def implicit_index_keys(self, constraints: IntrospectedConstraints) -> Set[Tuple[str, str]]:
        return set()


class CockroachIntrospectionDriver:
    """
    CockroachDB catalog access.

    Columns and indexes come from information_schema (crdb_sql_type keeps
    the real integer width), constraints from pg_catalog. Unique
    constraints are reported both as constraints and as unique indexes;
    artifact reconciliation keeps whichever one is configured.
    """

    dialect = Dialect.COCKROACHDB.value
    unnamed_constraint_kinds: FrozenSet[str] = frozenset()

    def __init__(self, session: "DatabaseSession", extra_types: Iterable[str] = ()):
        self.session = session
        self.traits = DIALECT_TRAITS[Dialect.COCKROACHDB]
        self._convert = make_type_converter(self.traits, extra_types)

    async def introspect_tables(self) -> List[TableSnapshot]:
        rows = [
            row
            for row in await fetch_cockroach_columns(self.session)
            if row["column_name"] != "rowid"
        ]
        return assemble_tables(rows, self.convert_type_name)

    async def introspect_indexes(self) -> List[IndexDefinition]:
        return assemble_indexes(await fetch_cockroach_indexes(self.session))

    async def introspect_constraints(self) -> IntrospectedConstraints:
        return assemble_constraints(await fetch_pg_constraints(self.session))

    def convert_type_name(self, type_name: str) -> str:
        return self._convert(type_name)

    def implicit_index_keys(self, constraints: IntrospectedConstraints) -> Set[Tuple[str, str]]:
        return set()


class MysqlIntrospectionDriver:
    """MySQL catalog access; primary keys are always named PRIMARY."""

    dialect = Dialect.MYSQL.value
    unnamed_constraint_kinds: FrozenSet[str] = frozenset({PRIMARY_KEY})

    def __init__(self, session: "DatabaseSession", extra_types: Iterable[str] = ()):
        self.session = session
        self.traits = DIALECT_TRAITS[Dialect.MYSQL]
        self._convert = make_type_converter(self.traits, extra_types)

    async def introspect_tables(self) -> List[TableSnapshot]:
        return assemble_tables(await fetch_mysql_columns(self.session), self.convert_type_name)

    async def introspect_indexes(self) -> List[IndexDefinition]:
        return assemble_indexes(await fetch_mysql_indexes(self.session))

    async def introspect_constraints(self) -> IntrospectedConstraints:
        return assemble_constraints(
            await fetch_mysql_constraints(self.session),
            primary_key_name=primary_key_constraint_name,
        )

    def convert_type_name(self, type_name: str) -> str:
        return self._convert(type_name)

    def implicit_index_keys(self, constraints: IntrospectedConstraints) -> Set[Tuple[str, str]]:
        return mysql_implicit_index_keys(constraints)


class MariadbIntrospectionDriver:
    """MariaDB catalog access; MySQL queries plus default normalization."""

    dialect = Dialect.MARIADB.value
    unnamed_constraint_kinds: FrozenSet[str] = frozenset({PRIMARY_KEY})

    def __init__(self, session: "DatabaseSession", extra_types: Iterable[str] = ()):
        self.session = session
        self.traits = DIALECT_TRAITS[Dialect.MARIADB]
        self._convert = make_type_converter(self.traits, extra_types)

    async def introspect_tables(self) -> List[TableSnapshot]:
        return assemble_tables(
            await fetch_mysql_columns(self.session),
            self.convert_type_name,
            normalize_default=normalize_mariadb_default,
        )

    async def introspect_indexes(self) -> List[IndexDefinition]:
        return assemble_indexes(await fetch_mysql_indexes(self.session))

    async def introspect_constraints(self) -> IntrospectedConstraints:
        return assemble_constraints(
            await fetch_mysql_constraints(self.session),
            primary_key_name=primary_key_constraint_name,
        )

    def convert_type_name(self, type_name: str) -> str:
        return self._convert(type_name)

    def implicit_index_keys(self, constraints: IntrospectedConstraints) -> Set[Tuple[str, str]]:
        return mysql_implicit_index_keys(constraints)


class SqliteIntrospectionDriver:
    """
    SQLite catalog access through sqlite_master and the PRAGMA functions.

    The catalog keeps no constraint names, so constraints are reported under
    the naming convention. Only explicitly created indexes (origin ``c``)
    count as indexes; ``u`` indexes are unique constraints.
    """

    dialect = Dialect.SQLITE.value
    unnamed_constraint_kinds: FrozenSet[str] = frozenset({PRIMARY_KEY, UNIQUE, FOREIGN_KEY})

    def __init__(self, session: "DatabaseSession", extra_types: Iterable[str] = ()):
        self.session = session
        self.traits = DIALECT_TRAITS[Dialect.SQLITE]
        self._convert = make_type_converter(self.traits, extra_types)

    async def introspect_tables(self) -> List[TableSnapshot]:
        rows = []
        for table in await fetch_sqlite_table_names(self.session):
            for column in await fetch_sqlite_columns(self.session, table):
                rows.append(
                    {
                        "table_name": table,
                        "column_name": column["name"],
                        "data_type": column["type"],
                        "not_null": column["not_null"],
                        "default_sql": column["dflt_value"],
                    }
                )
        return assemble_tables(rows, self.convert_type_name)

    async def introspect_indexes(self) -> List[IndexDefinition]:
        indexes = []
        for table in await fetch_sqlite_table_names(self.session):
            for index in await fetch_sqlite_index_list(self.session, table):
                if index["origin"] != "c":
                    continue
                indexes.append(
                    IndexDefinition(
                        table=table,
                        name=index["name"],
                        columns=await fetch_sqlite_index_columns(self.session, index["name"]),
                        unique=_is_true(index["is_unique"]),
                    )
                )
        return indexes

    async def introspect_constraints(self) -> IntrospectedConstraints:
        result = IntrospectedConstraints()
        for table in await fetch_sqlite_table_names(self.session):
            columns = await fetch_sqlite_columns(self.session, table)
            key_columns = [
                c["name"] for c in sorted(columns, key=lambda c: c["pk"]) if c["pk"]
            ]
            if key_columns:
                result.primary_key.append(
                    PrimaryKeyConstraint(
                        table=table,
                        name=primary_key_constraint_name(table, key_columns),
                        columns=key_columns,
                    )
                )

            for index in await fetch_sqlite_index_list(self.session, table):
                if index["origin"] != "u":
                    continue
                unique_columns = await fetch_sqlite_index_columns(self.session, index["name"])
                result.unique.append(
                    UniqueConstraint(
                        table=table,
                        name=unique_constraint_name(table, unique_columns),
                        columns=unique_columns,
                    )
                )

            grouped: Dict[int, List[Dict[str, Any]]] = {}
            for row in await fetch_sqlite_foreign_keys(self.session, table):
                grouped.setdefault(row["id"], []).append(row)
            for fk_rows in grouped.values():
                fk_columns = [row["column_name"] for row in fk_rows]
                result.foreign_key.append(
                    ForeignKeyConstraint(
                        table=table,
                        name=foreign_key_constraint_name(table, fk_columns),
                        columns=fk_columns,
                        referenced_table=fk_rows[0]["referenced_table"],
                        referenced_columns=[row["referenced_column"] for row in fk_rows],
                        on_delete=parse_referential_action(fk_rows[0]["on_delete"]),
                        on_update=parse_referential_action(fk_rows[0]["on_update"]),
                    )
                )
        return result

    def convert_type_name(self, type_name: str) -> str:
        return self._convert(type_name)

    def implicit_index_keys(self, constraints: IntrospectedConstraints) -> Set[Tuple[str, str]]:
        return set()


_DRIVERS = {
    Dialect.POSTGRES: PostgresIntrospectionDriver,
    Dialect.COCKROACHDB: CockroachIntrospectionDriver,
    Dialect.MYSQL: MysqlIntrospectionDriver,
    Dialect.MARIADB: MariadbIntrospectionDriver,
    Dialect.SQLITE: SqliteIntrospectionDriver,
}


def create_introspection_driver(
    dialect: str, session: "DatabaseSession", extra_types: Iterable[str] = ()
):
    """Create the introspection driver for a dialect."""
    traits = get_dialect_traits(dialect)
    return _DRIVERS[traits.dialect](session, extra_types)
