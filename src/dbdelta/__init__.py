"""
dbdelta: declarative schema migrations for SQL databases.

dbdelta compares a live database against a YAML description of the schema
you want and produces an ordered, dialect-aware list of DDL operations that
moves one to the other.
"""

__version__ = "0.1.0"

from .config import DbdeltaConfig
from .exceptions import (
    ApplyError,
    ConfigurationError,
    DatabaseError,
    DbdeltaError,
    UnsupportedOperationError,
)

__all__ = [
    "__version__",
    "DbdeltaConfig",
    "DbdeltaError",
    "ConfigurationError",
    "DatabaseError",
    "UnsupportedOperationError",
    "ApplyError",
]
