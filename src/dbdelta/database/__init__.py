"""Database connectivity and introspection for dbdelta."""

from .connection import ConnectionConfig, DatabaseSession, connect, open_session
from .dialects import Dialect, DialectTraits, get_dialect_traits
from .introspection import SchemaIntrospector

__all__ = [
    "ConnectionConfig",
    "DatabaseSession",
    "connect",
    "open_session",
    "Dialect",
    "DialectTraits",
    "get_dialect_traits",
    "SchemaIntrospector",
]
