"""Content Importer CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from content_importer.cli.crawl import crawl_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="content-importer",
    help="Content Importer - import articles and products from external websites",
    add_completion=False,
)
app.add_typer(crawl_app, name="crawl")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    level = os.environ.get("LOG_LEVEL", "DEBUG" if verbose else "INFO")
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def run(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the Content Importer API server."""
    import uvicorn

    typer.echo(f"Starting Content Importer on http://{host}:{port}")
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "content_importer.web.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def init_db(
    migrate: bool = typer.Option(False, "--migrate", help="Run Alembic migrations instead of create_all"),
) -> None:
    """Initialize the database (create tables)."""
    from content_importer.db.engine import init_db as db_init
    from content_importer.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Content Importer version."""
    typer.echo("Content Importer v0.1.0")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from content_importer.core.errors import ConfigValidationError
    from content_importer.db.engine import get_database_url
    from content_importer.ingestion.registry import get_default_registry

    typer.echo("Content Importer Configuration")
    typer.echo("=" * 40)

    # Check .env file
    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    typer.echo(f"  Database: {get_database_url()}")
    typer.echo(f"  Redis: {os.environ.get('REDIS_HOST', 'localhost')}:{os.environ.get('REDIS_PORT', '6379')}")

    try:
        registry = get_default_registry()
    except ConfigValidationError as e:
        typer.echo(f"  Sources: invalid configuration ({e})", err=True)
        raise typer.Exit(1)

    sources = registry.list_sources()
    invalid = {}
    for source in sources:
        errors = registry.validate(source)
        if errors:
            invalid[source.name] = errors
    typer.echo(f"  Sources: {len(sources)} configured, {len(invalid)} invalid")
    typer.echo(f"  Asset storage: {os.environ.get('ASSET_STORAGE_PATH', registry.global_config.asset_storage_path)}")
    for name, errors in invalid.items():
        typer.echo(f"    {name}: {'; '.join(errors)}")


if __name__ == "__main__":
    app()
