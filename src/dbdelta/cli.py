"""
Command-line interface for dbdelta.
"""

import asyncio
import sys
from functools import wraps
from typing import Any, List, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import DbdeltaConfig
from .database.connection import open_session
from .database.dialects import get_dialect_traits
from .exceptions import (
    ApplyError,
    ConfigurationError,
    DatabaseConfigurationError,
    DatabaseConnectionError,
    DbdeltaError,
    IntrospectionError,
    UnknownTypeError,
    ValidationError,
)
from .logging_config import configure_logging
from .migrations import MigrationRun, MigrationRunner, write_migration
from .schema.executor import CollectingChannel, SchemaOperations
from .schema.operations import describe_operation
from .schema.reconciler import ReconciliationStatus, SchemaReconciler


# stdout carries SQL only; everything else goes to stderr
console = Console()
err_console = Console(stderr=True)


EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_CONNECTION = 3
EXIT_APPLY = 4
EXIT_INTERRUPTED = 130


def exit_code_for(error: DbdeltaError) -> int:
    """Map a library error to a process exit code."""
    if isinstance(
        error,
        (ConfigurationError, ValidationError, DatabaseConfigurationError, UnknownTypeError),
    ):
        return EXIT_CONFIG
    if isinstance(error, (DatabaseConnectionError, IntrospectionError)):
        return EXIT_CONNECTION
    if isinstance(error, ApplyError):
        return EXIT_APPLY
    return EXIT_ERROR


def _debug_enabled() -> bool:
    ctx = click.get_current_context(silent=True)
    return bool(ctx and ctx.obj and ctx.obj.get("debug"))


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DbdeltaError as e:
            err_console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
            if isinstance(e, ApplyError):
                _print_apply_failure(e)
            sys.exit(exit_code_for(e))
        except KeyboardInterrupt:
            err_console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(EXIT_INTERRUPTED)
        except Exception as e:
            err_console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            if _debug_enabled():
                err_console.print_exception()
            sys.exit(EXIT_ERROR)
    return wrapper


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Configuration file path",
)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug logging"
)
@click.pass_context
def main(ctx, debug):
    """dbdelta: declarative schema migrations for SQL databases."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    configure_logging(debug=debug)


def _load_config(path: str) -> DbdeltaConfig:
    config = DbdeltaConfig.from_yaml(path)
    config.validate_config()
    configure_logging(config.logging, debug=_debug_enabled())
    return config


@main.command()
@config_option
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    err_console.print(f"Validating configuration: {config}")

    dbdelta_config = _load_config(config)
    snapshot = dbdelta_config.to_snapshot()

    err_console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(dbdelta_config, snapshot)


@main.command()
@config_option
@handle_errors
def plan(config: str):
    """Show the SQL that would bring the database in line with the configuration."""
    dbdelta_config = _load_config(config)

    async def run_plan():
        async with open_session(dbdelta_config.database) as session:
            return await SchemaReconciler(session, dbdelta_config).plan()

    result = asyncio.run(run_plan())

    if not result.has_changes:
        err_console.print("[green]No changes detected[/green]")
        return

    _print_operations(result.planned_operations)
    _print_statements(result.statements)

    if result.status != ReconciliationStatus.SUCCESS:
        for error in result.errors:
            err_console.print(f"[red]✗[/red] {escape(error)}", highlight=False)
        sys.exit(EXIT_ERROR)


@main.command()
@config_option
@click.option(
    "--ignore-pending",
    is_flag=True,
    help="Generate even when earlier migrations are not applied yet",
)
@click.option(
    "--squash",
    is_flag=True,
    help="Replace the pending migration files with one regenerated migration",
)
@click.option(
    "--apply",
    "apply_after",
    is_flag=True,
    help="Apply pending migrations after generating",
)
@click.option(
    "--plan",
    "plan_only",
    is_flag=True,
    help="With --apply, print the SQL instead of executing it",
)
@handle_errors
def generate(
    config: str, ignore_pending: bool, squash: bool, apply_after: bool, plan_only: bool
):
    """Write a migration file for the difference between database and configuration."""
    if squash and ignore_pending:
        raise ValidationError(
            "--squash and --ignore-pending cannot be used together; "
            "--squash already consolidates the pending migrations"
        )

    dbdelta_config = _load_config(config)
    traits = get_dialect_traits(dbdelta_config.database.dialect)

    async def run_generate():
        async with open_session(dbdelta_config.database) as session:
            runner = MigrationRunner(session, traits, dbdelta_config.migrations_dir)

            if squash:
                removed = await runner.remove_pending()
                if not removed:
                    err_console.print("No pending migrations found, nothing to squash")
                    return
                err_console.print(
                    f"[green]✓[/green] Removed {len(removed)} pending migration files: "
                    f"{', '.join(m.id for m in removed)}"
                )
            elif not ignore_pending:
                pending = await runner.pending()
                if pending:
                    err_console.print(
                        f"[yellow]There are pending migrations: "
                        f"{', '.join(m.id for m in pending)}[/yellow]\n"
                        "Apply them before generating a new migration, "
                        "or use --ignore-pending to skip this check."
                    )
                    return

            migration_plan = await SchemaReconciler(session, dbdelta_config).compute_plan()
            if migration_plan.is_empty:
                err_console.print("[green]No changes detected, no migration needed[/green]")
                return

            _print_operations(migration_plan.operations)
            # unsupported operations fail here, before anything is written
            await SchemaOperations(CollectingChannel(), traits).execute_plan(
                migration_plan.operations
            )
            path = write_migration(dbdelta_config.migrations_dir, migration_plan.operations)
            label = "Squashed migration" if squash else "Migration file"
            err_console.print(f"[green]✓[/green] {label} generated: {path}")

            if apply_after:
                await _run_migrations(runner, plan_only)

    asyncio.run(run_generate())


@main.command()
@config_option
@click.option(
    "--plan",
    "plan_only",
    is_flag=True,
    help="Print the SQL of pending migrations without executing it",
)
@handle_errors
def apply(config: str, plan_only: bool):
    """Apply pending migration files."""
    dbdelta_config = _load_config(config)
    traits = get_dialect_traits(dbdelta_config.database.dialect)

    async def run_apply():
        async with open_session(dbdelta_config.database) as session:
            runner = MigrationRunner(session, traits, dbdelta_config.migrations_dir)
            await _run_migrations(runner, plan_only)

    asyncio.run(run_apply())


async def _run_migrations(runner: MigrationRunner, plan_only: bool) -> List[MigrationRun]:
    if plan_only:
        runs = await runner.plan()
    else:
        runs = await runner.apply()

    if not runs:
        err_console.print("[green]No pending migrations[/green]")
        return runs

    for run in runs:
        if plan_only:
            err_console.print(f"[blue]Migration {run.migration.id}[/blue]")
            _print_statements(run.statements)
        else:
            err_console.print(
                f"[green]✓[/green] Applied migration {run.migration.id} "
                f"({len(run.statements)} statements, {run.execution_time_ms:.0f}ms)"
            )
    return runs


def _print_operations(operations: Sequence[Any]) -> None:
    err_console.print(f"[blue]{len(operations)} planned operations[/blue]")
    for operation in operations:
        err_console.print(f"  - {describe_operation(operation)}", highlight=False)


def _print_statements(statements: Sequence[str]) -> None:
    for statement in statements:
        console.print(f"{statement};", markup=False, highlight=False, soft_wrap=True)


def _print_apply_failure(error: ApplyError) -> None:
    failed = error.failed_operation
    if failed is not None:
        err_console.print(f"  failed: {describe_operation(failed)}", highlight=False)
    if error.rolled_back:
        err_console.print("  all changes were rolled back")
    else:
        err_console.print(
            f"  {len(error.applied_operations)} operations were applied before the failure"
        )
        for operation in error.applied_operations:
            err_console.print(f"    - {describe_operation(operation)}", highlight=False)


def _display_config_summary(config: DbdeltaConfig, snapshot) -> None:
    """Display a summary of the configuration."""
    err_console.print("\n[blue]Configuration Summary[/blue]")
    err_console.print(f"Dialect: {config.database.dialect.value}")
    err_console.print(f"Migrations: {config.migrations_dir}")

    tables = Table(title="Tables")
    tables.add_column("Name", style="cyan")
    tables.add_column("Columns", style="magenta")
    tables.add_column("Primary Key", style="green")
    tables.add_column("Indexes", style="yellow")
    tables.add_column("Foreign Keys", style="yellow")

    for table in snapshot.tables:
        primary_key = next(
            (pk for pk in snapshot.primary_key_constraints if pk.table == table.name), None
        )
        tables.add_row(
            table.name,
            str(len(table.columns)),
            ", ".join(primary_key.columns) if primary_key else "-",
            str(sum(1 for i in snapshot.indexes if i.table == table.name)),
            str(sum(1 for fk in snapshot.foreign_key_constraints if fk.table == table.name)),
        )

    err_console.print(tables)


if __name__ == "__main__":
    main()
