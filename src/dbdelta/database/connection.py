"""
Database session management for dbdelta.

One session per invocation, scoped by ``open_session``. Each dialect
family gets a thin adapter with the same async surface (``fetch``,
``fetchval``, ``execute``, ``transaction``, ``close``) over its driver:
asyncpg for postgres and cockroachdb, aiomysql for mysql and mariadb,
aiosqlite for sqlite.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlparse

import aiomysql
import aiosqlite
import asyncpg
from pydantic import BaseModel, Field, field_validator

from ..exceptions import DatabaseConfigurationError, DatabaseConnectionError
from .dialects import Dialect


logger = logging.getLogger(__name__)


DEFAULT_PORTS = {
    Dialect.POSTGRES: 5432,
    Dialect.COCKROACHDB: 26257,
    Dialect.MYSQL: 3306,
    Dialect.MARIADB: 3306,
}

_URL_SCHEMES = {
    Dialect.POSTGRES: ("postgresql", "postgres"),
    Dialect.COCKROACHDB: ("cockroachdb", "postgresql", "postgres"),
    Dialect.MYSQL: ("mysql",),
    Dialect.MARIADB: ("mariadb", "mysql"),
    Dialect.SQLITE: ("sqlite",),
}


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    dialect: Dialect = Field(..., description="Target dialect")
    host: str = Field("localhost", description="Database host")
    port: Optional[int] = Field(None, description="Database port")
    database: str = Field(..., description="Database name, or file path for sqlite")
    user: str = Field("", description="Database user")
    password: str = Field("", description="Database password")

    command_timeout: float = Field(60.0, description="Command timeout in seconds")
    ssl_mode: Optional[str] = Field(None, description="SSL mode")

    @field_validator("database")
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_url(cls, url: str, dialect: Dialect) -> "ConnectionConfig":
        """
        Create configuration from a connection string.

        For sqlite a bare path (or ``:memory:``) is accepted as well as
        ``sqlite:///path``.
        """
        dialect = Dialect(dialect)

        if dialect == Dialect.SQLITE:
            if url.startswith("sqlite:"):
                path = url[len("sqlite:"):]
                if path.startswith("///"):
                    path = path[3:]
                elif path.startswith("//"):
                    path = path[2:]
            else:
                path = url
            if not path:
                raise DatabaseConfigurationError("SQLite database path is required")
            return cls(dialect=dialect, database=path)

        parsed = urlparse(url)
        if parsed.scheme not in _URL_SCHEMES[dialect]:
            raise DatabaseConfigurationError(
                f"Invalid database URL scheme for {dialect.value}: {parsed.scheme}"
            )

        if not parsed.path or parsed.path == "/":
            raise DatabaseConfigurationError("Database name is required")

        query_params = parse_qs(parsed.query) if parsed.query else {}

        config_data: Dict[str, Any] = {
            "dialect": dialect,
            "host": parsed.hostname or "localhost",
            "port": parsed.port or DEFAULT_PORTS[dialect],
            "database": parsed.path.lstrip("/"),
            "user": unquote(parsed.username or ""),
            "password": unquote(parsed.password or ""),
        }
        if "sslmode" in query_params:
            config_data["ssl_mode"] = query_params["sslmode"][0]

        return cls(**config_data)

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to driver connection kwargs."""
        if self.dialect in (Dialect.POSTGRES, Dialect.COCKROACHDB):
            kwargs: Dict[str, Any] = {
                "host": self.host,
                "port": self.port,
                "database": self.database,
                "user": self.user,
                "password": self.password,
                "command_timeout": self.command_timeout,
                "server_settings": {"application_name": "dbdelta"},
            }
            if self.ssl_mode:
                kwargs["ssl"] = self.ssl_mode
            return kwargs

        if self.dialect in (Dialect.MYSQL, Dialect.MARIADB):
            return {
                "host": self.host,
                "port": self.port,
                "db": self.database,
                "user": self.user,
                "password": self.password,
                "autocommit": True,
                "cursorclass": aiomysql.DictCursor,
            }

        return {"database": self.database, "isolation_level": None}

    @property
    def display_name(self) -> str:
        """Connection target without credentials."""
        if self.dialect == Dialect.SQLITE:
            return f"sqlite:{self.database}"
        return f"{self.dialect.value}://{self.host}:{self.port}/{self.database}"


class DatabaseSession(ABC):
    """Async session over one live connection."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect

    @abstractmethod
    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        """Fetch all results from a query as dicts."""
        pass

    @abstractmethod
    async def execute(self, query: str, *args) -> None:
        """Execute a statement."""
        pass

    @abstractmethod
    def transaction(self):
        """Async context manager wrapping a transaction."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def fetchrow(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """Fetch a single row from a query."""
        rows = await self.fetch(query, *args)
        return rows[0] if rows else None

    async def fetchval(self, query: str, *args) -> Any:
        """Fetch a single value from a query."""
        row = await self.fetchrow(query, *args)
        if row is None:
            return None
        return next(iter(row.values()))


class PostgresSession(DatabaseSession):
    """asyncpg-backed session (postgres and cockroachdb)."""

    def __init__(self, dialect: Dialect, connection: asyncpg.Connection):
        super().__init__(dialect)
        self._conn = connection

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        records = await self._conn.fetch(query, *args)
        return [dict(record) for record in records]

    async def execute(self, query: str, *args) -> None:
        await self._conn.execute(query, *args)

    def transaction(self):
        return self._conn.transaction()

    async def close(self) -> None:
        await self._conn.close()


class MysqlSession(DatabaseSession):
    """aiomysql-backed session (mysql and mariadb)."""

    def __init__(self, dialect: Dialect, connection: aiomysql.Connection):
        super().__init__(dialect)
        self._conn = connection

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        async with self._conn.cursor() as cursor:
            await cursor.execute(query, args or None)
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def execute(self, query: str, *args) -> None:
        async with self._conn.cursor() as cursor:
            await cursor.execute(query, args or None)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        await self._conn.begin()
        try:
            yield
        except BaseException:
            await self._conn.rollback()
            raise
        else:
            await self._conn.commit()

    async def close(self) -> None:
        self._conn.close()


class SqliteSession(DatabaseSession):
    """aiosqlite-backed session."""

    def __init__(self, connection: aiosqlite.Connection):
        super().__init__(Dialect.SQLITE)
        self._conn = connection

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        cursor = await self._conn.execute(query, args)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def execute(self, query: str, *args) -> None:
        await self._conn.execute(query, args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        await self._conn.execute("BEGIN")
        try:
            yield
        except BaseException:
            await self._conn.execute("ROLLBACK")
            raise
        else:
            await self._conn.execute("COMMIT")

    async def close(self) -> None:
        await self._conn.close()


async def connect(config: ConnectionConfig) -> DatabaseSession:
    """Open a session for the configured dialect."""
    logger.info(f"Connecting to {config.display_name}")
    kwargs = config.to_connection_kwargs()

    try:
        if config.dialect in (Dialect.POSTGRES, Dialect.COCKROACHDB):
            conn = await asyncpg.connect(**kwargs)
            return PostgresSession(config.dialect, conn)

        if config.dialect in (Dialect.MYSQL, Dialect.MARIADB):
            conn = await aiomysql.connect(**kwargs)
            return MysqlSession(config.dialect, conn)

        conn = await aiosqlite.connect(kwargs["database"], isolation_level=None)
        conn.row_factory = sqlite3.Row
        await conn.execute("PRAGMA foreign_keys = ON")
        return SqliteSession(conn)

    except Exception as e:
        logger.error(f"Failed to connect to {config.display_name}: {e}")
        raise DatabaseConnectionError(
            f"Failed to connect to {config.display_name}", cause=e
        ) from e


@asynccontextmanager
async def open_session(database_config) -> AsyncIterator[DatabaseSession]:
    """
    Open a session scoped to one invocation.

    ``database_config`` is the ``database`` section of the configuration
    (``dialect`` and ``connection_string``). The session is closed on every
    exit path.
    """
    config = ConnectionConfig.from_url(
        database_config.connection_string, Dialect(database_config.dialect)
    )
    session = await connect(config)
    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception as e:
            logger.error(f"Error closing session to {config.display_name}: {e}")
        else:
            logger.debug(f"Closed session to {config.display_name}")
