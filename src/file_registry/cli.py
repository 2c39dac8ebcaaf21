import sys
import json
import asyncio
import click
from loguru import logger

from .exceptions import FileRegistryError
from .models import EmbargoStage
from .schemas import UpdateOptions


def configure_logging(verbose: bool = False) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """Top-level CLI group for the file registry tool."""
    configure_logging(verbose)


# ============================================================================
# Database Management Commands
# ============================================================================

@cli.group(name="db")
def db_group():
    """Database schema and data management commands."""
    pass


@db_group.command(name="create-schema")
@click.option(
    "--database-url",
    envvar="POSTGRES_URI",
    required=True,
    help="Database connection string (or set POSTGRES_URI env var)"
)
@click.option(
    "--drop-existing",
    is_flag=True,
    help="Drop existing tables before creating schema"
)
@click.confirmation_option(
    prompt="Are you sure you want to create the database schema?",
    help="Skip confirmation prompt"
)
def create_schema(database_url: str, drop_existing: bool):
    """Create database schema from SQLAlchemy models."""
    from . import db_utils

    click.echo(f"Creating schema in database: {database_url}")

    if drop_existing:
        click.echo(click.style("⚠️  WARNING: Dropping all existing tables!", fg="yellow", bold=True))

    try:
        asyncio.run(db_utils.create_schema(database_url, drop_existing=drop_existing))
        click.echo(click.style("✓ Schema created successfully!", fg="green"))
    except Exception as e:
        click.echo(click.style(f"✗ Error creating schema: {e}", fg="red"), err=True)
        raise click.Abort()


@db_group.command(name="seed")
@click.option(
    "--database-url",
    envvar="POSTGRES_URI",
    required=True,
    help="Database connection string (or set POSTGRES_URI env var)"
)
def seed_data(database_url: str):
    """Seed the file id sequence."""
    from . import db_utils

    click.echo(f"Seeding initial data in database: {database_url}")

    try:
        asyncio.run(db_utils.seed_initial_data(database_url))
        click.echo(click.style("✓ Initial data seeded successfully!", fg="green"))
    except Exception as e:
        click.echo(click.style(f"✗ Error seeding data: {e}", fg="red"), err=True)
        raise click.Abort()


@db_group.command(name="stats")
@click.option(
    "--database-url",
    envvar="POSTGRES_URI",
    required=True,
    help="Database connection string (or set POSTGRES_URI env var)"
)
def show_stats(database_url: str):
    """Show file counts per embargo stage and release state."""
    from . import db_utils

    click.echo(f"Fetching statistics from database: {database_url}\n")

    try:
        stats = asyncio.run(db_utils.get_database_stats(database_url))
    except Exception as e:
        click.echo(click.style(f"✗ Error fetching statistics: {e}", fg="red"), err=True)
        raise click.Abort()

    width = max(len(name) for name in stats)
    click.echo(click.style("Database Statistics", bold=True))
    click.echo("=" * (width + 20))
    for name, count in stats.items():
        color = "green" if count > 0 else "white"
        click.echo(f"  {name:<{width}} : {click.style(str(count), fg=color)}")


@db_group.command(name="verify")
@click.option(
    "--database-url",
    envvar="POSTGRES_URI",
    required=True,
    help="Database connection string (or set POSTGRES_URI env var)"
)
def verify_schema(database_url: str):
    """Verify that database schema matches SQLAlchemy models."""
    from . import db_utils

    click.echo(f"Verifying schema in database: {database_url}\n")

    if asyncio.run(db_utils.verify_schema(database_url)):
        click.echo(click.style("✓ Schema verification passed!", fg="green", bold=True))
    else:
        click.echo(click.style("✗ Schema verification failed!", fg="red", bold=True), err=True)
        raise click.Abort()


@db_group.command(name="init")
@click.option(
    "--database-url",
    envvar="POSTGRES_URI",
    required=True,
    help="Database connection string (or set POSTGRES_URI env var)"
)
@click.option(
    "--drop-existing",
    is_flag=True,
    help="Drop existing tables before creating schema"
)
def init_database(database_url: str, drop_existing: bool):
    """Initialize database (create schema + seed data)."""
    from . import db_utils

    click.echo(click.style("Initializing database...\n", bold=True))

    if drop_existing:
        click.echo(click.style("⚠️  WARNING: This will drop all existing tables!", fg="yellow", bold=True))
        if not click.confirm("Are you sure you want to continue?"):
            raise click.Abort()

    try:
        click.echo("[1/3] Creating schema...")
        asyncio.run(db_utils.create_schema(database_url, drop_existing=drop_existing))
        click.echo(click.style("  ✓ Schema created", fg="green"))

        click.echo("[2/3] Seeding initial data...")
        asyncio.run(db_utils.seed_initial_data(database_url))
        click.echo(click.style("  ✓ Data seeded", fg="green"))

        click.echo("[3/3] Verifying schema...")
        if not asyncio.run(db_utils.verify_schema(database_url)):
            click.echo(click.style("  ✗ Verification failed", fg="red"), err=True)
            raise click.Abort()
        click.echo(click.style("  ✓ Verification passed", fg="green"))
    except click.Abort:
        raise
    except Exception as e:
        click.echo(click.style(f"\n✗ Database initialization failed: {e}", fg="red", bold=True), err=True)
        raise click.Abort()

    click.echo(click.style("\nDatabase initialized successfully!", fg="green", bold=True))


# ============================================================================
# File Commands
# ============================================================================

def _run(database_url: str, operation):
    """Run ``operation(service)`` against a fresh engine and dispose it afterwards."""
    from .db import create_session_maker
    from .service import FileService
    from .store import FileStore

    async def runner():
        engine, session_maker = create_session_maker(database_url)
        try:
            return await operation(FileService(FileStore(session_maker)))
        finally:
            await engine.dispose()

    try:
        return asyncio.run(runner())
    except FileRegistryError as e:
        click.echo(click.style(f"✗ {e.message}", fg="red"), err=True)
        raise click.Abort()
    except Exception as e:
        click.echo(click.style(f"✗ Error: {e}", fg="red"), err=True)
        raise click.Abort()


def _file_filter(include: dict, exclude: dict):
    from .schemas import FileFilter, FileFilterProperties

    def props(values: dict):
        values = {k: list(v) for k, v in values.items() if v}
        return FileFilterProperties(**values) if values else None

    return FileFilter(include=props(include), exclude=props(exclude))


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def filter_options(func):
    """Attach include/exclude options for every filter property."""
    for name in ("file-id", "object-id", "donor", "analysis", "program"):
        func = click.option(f"--exclude-{name}", multiple=True, help=f"Exclude files with this {name.replace('-', ' ')}")(func)
        func = click.option(f"--{name}", multiple=True, help=f"Only files with this {name.replace('-', ' ')}")(func)
    return func


def _filter_from_options(options: dict):
    include = {
        "analyses": options["analysis"],
        "donors": options["donor"],
        "programs": options["program"],
        "object_ids": options["object_id"],
        "file_ids": options["file_id"],
    }
    exclude = {
        "analyses": options["exclude_analysis"],
        "donors": options["exclude_donor"],
        "programs": options["exclude_program"],
        "object_ids": options["exclude_object_id"],
        "file_ids": options["exclude_file_id"],
    }
    return _file_filter(include, exclude)


@cli.group(name="files")
@click.option(
    "--database-url",
    envvar="POSTGRES_URI",
    required=True,
    help="Database connection string (or set POSTGRES_URI env var)"
)
@click.pass_context
def files_group(ctx: click.Context, database_url: str):
    """Query and manage file records."""
    ctx.obj = {"database_url": database_url}


@files_group.command(name="get")
@click.argument("file_id")
@click.pass_context
def get_file(ctx: click.Context, file_id: str):
    """Show one file by its FL-prefixed id."""
    file = _run(ctx.obj["database_url"], lambda service: service.get_file_by_id(file_id))
    _echo_json(file.model_dump(mode="json", by_alias=True))


@files_group.command(name="list")
@filter_options
@click.pass_context
def list_files(ctx: click.Context, **options):
    """List files matching include/exclude filters."""
    file_filter = _filter_from_options(options)
    files = _run(ctx.obj["database_url"], lambda service: service.get_files(file_filter))
    _echo_json([f.model_dump(mode="json", by_alias=True) for f in files])


def _bulk_admin_command(name: str, field: str):
    def command(ctx: click.Context, stage: str, dry_run: bool, **options):
        file_filter = _filter_from_options(options)

        if dry_run:
            files = _run(ctx.obj["database_url"], lambda service: service.get_files(file_filter))
            _echo_json({
                "message": "DRY RUN ONLY - No changes made.",
                "total": len(files),
                "ids": [f.object_id for f in files],
            })
            return

        def operation(service):
            method = service.admin_promote if field == "admin_promote" else service.admin_demote
            return method(file_filter, EmbargoStage(stage), UpdateOptions(return_documents=True))

        files = _run(ctx.obj["database_url"], operation)
        _echo_json({
            "message": f"Successfully updated {len(files)} files. {field} value set to {stage}",
            "total": len(files),
            "ids": [f.object_id for f in files],
        })

    command.__doc__ = f"Set {field} on every file matching the filters."
    command = click.pass_context(command)
    command = filter_options(command)
    command = click.option("--dry-run", is_flag=True, help="Show the matching files without changing them")(command)
    command = click.argument("stage", type=click.Choice([s.value for s in EmbargoStage]))(command)
    return files_group.command(name=name)(command)


promote_files = _bulk_admin_command("promote", "admin_promote")
demote_files = _bulk_admin_command("demote", "admin_demote")


@files_group.command(name="delete")
@click.argument("file_ids", nargs=-1)
@click.option("--all", "delete_all", is_flag=True, help="Delete every file record")
@click.pass_context
def delete_files(ctx: click.Context, file_ids: tuple, delete_all: bool):
    """Delete files by FL-prefixed id, or every file with --all."""
    if not file_ids and not delete_all:
        click.echo(click.style("✗ Give at least one file id, or --all", fg="red"), err=True)
        raise click.Abort()
    if file_ids and delete_all:
        click.echo(click.style("✗ --all cannot be combined with file ids", fg="red"), err=True)
        raise click.Abort()
    if delete_all:
        click.echo(click.style("⚠️  WARNING: This will delete ALL file records!", fg="yellow", bold=True))
        if not click.confirm("Are you sure you want to continue?"):
            raise click.Abort()

    deleted = _run(ctx.obj["database_url"], lambda service: service.delete_by_ids(list(file_ids)))
    click.echo(click.style(f"✓ Deleted {deleted} files", fg="green"))


__all__ = ["cli"]
