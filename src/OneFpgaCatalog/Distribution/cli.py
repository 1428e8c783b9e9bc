"""Command line interface for catalog builds.

Provides six commands:
  - build: full rebuild of the distribution tree
  - propagate: rerun version propagation over an existing tree
  - ingest: build one system games database from a game list
  - hash: print size, digest and signature status of files
  - steps: list registered build steps and step directories
  - version: print the package version
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from OneFpgaCatalog.Distribution import __version__
from OneFpgaCatalog.Distribution.build_steps import discover_build_steps, get_step_factories
from OneFpgaCatalog.Distribution.errors import CatalogBuildError, SignatureError
from OneFpgaCatalog.Distribution.formats import load_descriptor
from OneFpgaCatalog.Distribution.integrity import (
    OFFICIAL_PUBLIC_KEY,
    hash_and_size,
    verify_signature,
)
from OneFpgaCatalog.Distribution.logging_utils import setup_logging
from OneFpgaCatalog.Distribution.pipeline import propagate_catalogs, run_build
from OneFpgaCatalog.Distribution.settings import BuildSettings, load_settings
from OneFpgaCatalog.GamesDb.ingest import ingest_games

app = typer.Typer(help="Build the 1FPGA catalog distribution tree", no_args_is_help=True)
console = Console()


def _settings(config: Optional[Path], **overrides) -> BuildSettings:
    settings = load_settings(config, **overrides).resolve_paths(Path.cwd())
    setup_logging(
        level=settings.log_level.value,
        log_format=settings.log_format.value,
        log_dir=settings.log_dir,
    )
    return settings


def _fail(exc: Exception) -> typer.Exit:
    typer.echo(f"✗ Error: {exc}", err=True)
    return typer.Exit(1)


ConfigOption = typer.Option(None, "--config", "-c", help="Settings file (TOML or YAML)")
LogLevelOption = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR")


@app.command()
def build(
    source_root: Optional[Path] = typer.Option(None, "--source-root", help="Source tree"),
    dist_root: Optional[Path] = typer.Option(None, "--dist-root", help="Distribution tree"),
    config: Optional[Path] = ConfigOption,
    log_level: Optional[str] = LogLevelOption,
    clean: Optional[bool] = typer.Option(
        None, "--clean/--no-clean", help="Remove the distribution tree first (default: clean)"
    ),
    sql_debug: Optional[bool] = typer.Option(
        None, "--sql-debug/--no-sql-debug", help="Trace SQL issued by games-db steps"
    ),
) -> None:
    """Rebuild the distribution tree from the source tree."""
    try:
        settings = _settings(
            config,
            source_root=source_root,
            dist_root=dist_root,
            log_level=log_level,
            clean_dist=clean,
            sql_debug=sql_debug,
        )
        summary = run_build(settings)
    except (CatalogBuildError, OSError) as exc:
        raise _fail(exc) from exc

    stats = summary.transform
    console.print(
        f"[green]✓[/green] built {summary.dist_root} "
        f"({stats.converted} converted, {stats.minified} minified, {stats.copied} copied, "
        f"{stats.steps} build steps) in {summary.elapsed_seconds:.2f}s"
    )
    for catalog, version in summary.catalogs.items():
        console.print(f"  {catalog}: version {version}")


@app.command()
def propagate(
    dist_root: Optional[Path] = typer.Option(None, "--dist-root", help="Distribution tree"),
    config: Optional[Path] = ConfigOption,
    log_level: Optional[str] = LogLevelOption,
) -> None:
    """Recompute versions, digests and signatures over an existing tree."""
    try:
        settings = _settings(config, dist_root=dist_root, log_level=log_level)
        versions = propagate_catalogs(settings)
    except (CatalogBuildError, OSError) as exc:
        raise _fail(exc) from exc
    for catalog, version in versions.items():
        console.print(f"[green]✓[/green] {catalog}: version {version}")


@app.command()
def ingest(
    games_file: Path = typer.Argument(..., help="Game list (JSON or TOML)"),
    system_file: Path = typer.Argument(..., help="System descriptor (JSON or TOML)"),
    output: Path = typer.Argument(..., help="SQLite database to create"),
    schema: Optional[Path] = typer.Option(None, "--schema", help="Schema script to apply"),
    sql_debug: bool = typer.Option(False, "--sql-debug", help="Trace every SQL statement"),
) -> None:
    """Build one system games database from a game list."""
    try:
        setup_logging(level="DEBUG" if sql_debug else "INFO")
        schema_sql = schema.read_text(encoding="utf-8") if schema is not None else None
        summary = ingest_games(
            output,
            load_descriptor(games_file),
            load_descriptor(system_file),
            schema_sql,
            sql_debug=sql_debug,
        )
    except (CatalogBuildError, OSError) as exc:
        raise _fail(exc) from exc
    console.print(
        f"[green]✓[/green] {summary.games} games written to {summary.database} "
        f"(version {summary.version}, {summary.tags} tags, {summary.sources} sources)"
    )


@app.command("hash")
def hash_files(
    files: List[Path] = typer.Argument(..., help="Files to hash"),
    algorithm: str = typer.Option("sha256", "--algorithm", "-a", help="hashlib algorithm"),
    public_key: Optional[Path] = typer.Option(
        None, "--public-key", help="PEM key used to check .sig files"
    ),
) -> None:
    """Print size, digest and signature status for each file, one per line."""
    failed = False
    try:
        key = public_key.read_text(encoding="ascii") if public_key else OFFICIAL_PUBLIC_KEY
        for path in files:
            size, digest = hash_and_size(path, algorithm)
            try:
                status = "valid" if verify_signature(path, key) else "absent"
            except SignatureError:
                status = "invalid"
                failed = True
            typer.echo(f"{path}\t{size}\t{algorithm}:{digest}\tsignature={status}")
    except (CatalogBuildError, OSError) as exc:
        raise _fail(exc) from exc
    if failed:
        raise typer.Exit(1)


@app.command()
def steps(
    source_root: Optional[Path] = typer.Option(None, "--source-root", help="Source tree"),
    config: Optional[Path] = ConfigOption,
) -> None:
    """List registered build steps and the directories that use them."""
    try:
        settings = _settings(config, source_root=source_root)
        factories = get_step_factories()
        registry = None
        if settings.source_root.is_dir():
            registry = discover_build_steps(settings.source_root)
    except (CatalogBuildError, OSError) as exc:
        raise _fail(exc) from exc

    console.print("Registered build steps:")
    for name, factory in sorted(factories.items()):
        console.print(f"  {name}: {getattr(factory, '__qualname__', repr(factory))}")
    if registry is None:
        console.print(f"[yellow]Source root {settings.source_root} not found[/yellow]")
        return
    table = Table(title=f"Step directories under {settings.source_root}")
    table.add_column("Directory")
    table.add_column("Step")
    for directory, step in registry.items():
        table.add_row(directory.as_posix(), type(step).__name__)
    console.print(table)


@app.command()
def version() -> None:
    """Print the package version."""
    console.print(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
