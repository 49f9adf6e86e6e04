"""
Exception classes for dbdelta.
"""

from typing import Any, Dict, List, Optional


class DbdeltaError(Exception):
    """Base exception for all dbdelta errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(DbdeltaError):
    """Raised when there's an error in configuration."""

    pass


class ValidationError(DbdeltaError):
    """Raised when there's a validation error."""

    pass


class OperationValidationError(ValidationError):
    """Raised when an operation list is malformed or cannot be consolidated."""

    pass


class DatabaseError(DbdeltaError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class IntrospectionError(DatabaseError):
    """Raised when the live schema cannot be read completely."""

    pass


class SchemaError(DatabaseError):
    """Raised when there's an error with database schema operations."""

    pass


class UnknownTypeError(SchemaError):
    """Raised when a column type is not recognised by the dialect."""

    def __init__(self, type_name: str, dialect: str) -> None:
        super().__init__(
            f"Unknown column type '{type_name}' for dialect '{dialect}'",
            {"hint": "add it to database.extra_types if it is a user-defined type"},
        )
        self.type_name = type_name
        self.dialect = dialect


class UnsupportedOperationError(SchemaError):
    """Raised when a dialect cannot express an operation as DDL."""

    def __init__(self, operation_type: str, dialect: str, reason: str) -> None:
        super().__init__(
            f"Operation '{operation_type}' is not supported by dialect '{dialect}': {reason}"
        )
        self.operation_type = operation_type
        self.dialect = dialect
        self.reason = reason


class ApplyError(DatabaseError):
    """Raised when applying a migration plan fails part-way."""

    def __init__(
        self,
        failed_operation: Any,
        applied_operations: Optional[List[Any]] = None,
        rolled_back: bool = False,
        cause: Optional[Exception] = None,
    ) -> None:
        applied_operations = list(applied_operations or [])
        details: Dict[str, Any] = {
            "operation": getattr(failed_operation, "type", "unknown"),
            "table": getattr(failed_operation, "table", None),
            "rolled_back": rolled_back,
        }
        if not rolled_back:
            details["applied_before_failure"] = len(applied_operations)
        super().__init__("Failed to apply migration plan", details, cause)
        self.failed_operation = failed_operation
        self.applied_operations = applied_operations
        self.rolled_back = rolled_back


class MigrationFileError(DbdeltaError):
    """Raised when a migration file cannot be read or written."""

    pass
