"""Command-line interface for schemaledger."""

from pathlib import Path

import click
from sqlalchemy.engine import make_url

from schemaledger import __version__
from schemaledger.config import Config
from schemaledger.errors import LockContentionError, MigrationError
from schemaledger.logging import setup_logging
from schemaledger.models import MigrationKind

# EX_TEMPFAIL: another runner holds the lock, try again later
EXIT_LOCKED = 75


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config).",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="Output logs as JSON or human-readable format (overrides config).",
)
@click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy database URL (overrides config).",
)
@click.option(
    "--migrations-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Migrations directory (overrides config).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    log_json: bool | None,
    database_url: str | None,
    migrations_dir: Path | None,
) -> None:
    """schemaledger - idempotent SQL schema migrations.

    Applies timestamped migration files in order, each in its own
    transaction, and records them in the schema_migrations table.
    """
    ctx.ensure_object(dict)

    # Load configuration
    config = Config.load_or_default(config_file)
    updates = {}
    if database_url:
        updates["database_url"] = database_url
    if migrations_dir:
        updates["migrations_dir"] = migrations_dir
    if updates:
        config = config.model_copy(update=updates)

    ctx.obj["config"] = config
    ctx.obj["config_file"] = config_file

    # Determine logging settings (CLI overrides config)
    effective_log_level = log_level or config.log_level
    effective_log_json = log_json if log_json is not None else config.log_json

    setup_logging(json_output=effective_log_json, level=effective_log_level)


@cli.command()
def version() -> None:
    """Print version information."""
    click.echo(f"schemaledger {__version__}")


@cli.command(name="status")
@click.pass_context
def status_cmd(ctx: click.Context) -> None:
    """Show applied and pending migrations."""
    from schemaledger.database import get_engine
    from schemaledger.runner import status

    config = ctx.obj["config"]
    engine = get_engine(config)

    try:
        report = status(engine, config.migrations_dir)
    except (MigrationError, FileNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Database: {engine.url.render_as_string(hide_password=True)}")
    click.echo(f"Migrations directory: {config.migrations_dir}")
    click.echo(f"Applied migrations: {len(report.applied)}")

    if report.pending:
        click.echo(f"Pending migrations: {len(report.pending)}")
        for migration in report.pending:
            click.echo(f"  {migration.identifier}: {migration.description}")
    else:
        click.echo("No pending migrations")

    for identifier in report.missing_files:
        click.echo(f"Warning: {identifier} is recorded but has no file")
    for identifier in report.modified:
        click.echo(f"Warning: {identifier} was modified after it was applied")


@cli.command(name="migrate")
@click.option(
    "--target",
    default=None,
    help="Last migration identifier to apply (default: latest).",
)
@click.pass_context
def migrate_cmd(ctx: click.Context, target: str | None) -> None:
    """Apply pending migrations."""
    from schemaledger.database import get_engine
    from schemaledger.runner import migrate

    config = ctx.obj["config"]
    engine = get_engine(config)

    try:
        applied = migrate(
            engine,
            config.migrations_dir,
            target=target,
            verify_checksums=config.runner.verify_checksums,
            lock_key=config.runner.lock_key,
            lock_owner=config.runner.lock_owner,
        )
    except LockContentionError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo("Another migration run is in progress; retry later.", err=True)
        raise SystemExit(EXIT_LOCKED)
    except (MigrationError, FileNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if not applied:
        click.echo("Database is up to date")
        return

    click.echo(f"Applied {len(applied)} migration(s):")
    for identifier in applied:
        click.echo(f"  {identifier}")


@cli.command(name="verify")
@click.pass_context
def verify_cmd(ctx: click.Context) -> None:
    """Check applied migration files against their recorded checksums."""
    from schemaledger.database import get_engine
    from schemaledger.runner import status

    config = ctx.obj["config"]
    engine = get_engine(config)

    try:
        report = status(engine, config.migrations_dir)
    except (MigrationError, FileNotFoundError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if report.modified:
        for identifier in report.modified:
            click.echo(f"Modified after apply: {identifier}")
        raise SystemExit(1)

    click.echo(f"All {len(report.applied)} applied migration(s) match their files")


@cli.command(name="new")
@click.argument("slug")
@click.option("--python", "as_python", is_flag=True, help="Create a Python migration.")
@click.pass_context
def new_cmd(ctx: click.Context, slug: str, as_python: bool) -> None:
    """Create an empty timestamped migration file."""
    from schemaledger.store import MigrationStore

    config = ctx.obj["config"]
    kind = MigrationKind.PYTHON if as_python else MigrationKind.SQL

    try:
        migration = MigrationStore(config.migrations_dir).new(slug, kind=kind)
    except (MigrationError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Created {migration.path}")


@cli.command(name="unlock")
@click.pass_context
def unlock_cmd(ctx: click.Context) -> None:
    """Release a lock left behind by a crashed run."""
    from schemaledger.database import get_engine
    from schemaledger.locking import force_unlock

    config = ctx.obj["config"]
    engine = get_engine(config)

    with engine.connect() as conn:
        removed = force_unlock(conn)

    if removed:
        click.echo("Lock released")
    else:
        click.echo("No lock held")


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="check")
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=True, path_type=Path),
    default="schemaledger.yaml",
    help="Path to configuration file.",
)
def config_check(config_file: Path) -> None:
    """Validate configuration file."""
    try:
        cfg = Config.load(config_file)
        click.echo(f"Configuration valid: {config_file}")
        click.echo(f"  Database URL: {make_url(cfg.database_url).render_as_string(hide_password=True)}")
        click.echo(f"  Migrations directory: {cfg.migrations_dir}")
        click.echo(f"  Log level: {cfg.log_level}")
        click.echo(f"  Verify checksums: {cfg.runner.verify_checksums}")
        if cfg.runner.lock_key is not None:
            click.echo(f"  Lock key: {cfg.runner.lock_key}")

    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
