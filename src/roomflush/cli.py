# src/roomflush/cli.py
"""roomflush Command Line Interface.

Entry point for the roomflush CLI tool.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import typer

from roomflush import __version__
from roomflush.contracts.errors import ConfigError
from roomflush.core.config import RoomflushSettings, import_mutator, load_settings

if TYPE_CHECKING:
    from roomflush.contracts.protocols import MutationFn
    from roomflush.contracts.results import RunResult
    from roomflush.core.config import RunConfig
    from roomflush.plugins.stores import DocumentQuery, JsonDirectoryStore

__all__ = ["app"]

app = typer.Typer(
    name="roomflush",
    help="roomflush: bounded-concurrency batch mutation of documents.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"roomflush version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,  # Existence is checked in _load_dotenv for a better message
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """roomflush: bounded-concurrency batch mutation of documents."""
    from roomflush.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")
    ctx.obj = {"verbose": verbose, "json_logs": json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _format_config_error(title: str, message: str, details: list[str] | None = None) -> None:
    """Display a configuration error panel on stderr."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    content = Text()
    content.append(message, style="white")
    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    Console(stderr=True).print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", padding=(0, 1)))


def _load_settings_or_exit(settings: str) -> RoomflushSettings:
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ConfigError as e:
        _format_config_error("Configuration errors", f"Invalid settings in {settings}", e.errors)
        raise typer.Exit(1) from None


def _resolve_mutator_or_exit(path: str | None, app_dir: Path) -> MutationFn:
    if path is None:
        typer.echo("Error: no mutator configured (set 'mutator' in settings or pass --mutator).", err=True)
        raise typer.Exit(1)
    # Like `uvicorn --app-dir`: user modules live next to the settings, not in site-packages
    resolved = str(app_dir.expanduser().resolve())
    if resolved not in sys.path:
        sys.path.insert(0, resolved)
    try:
        return import_mutator(path)
    except ConfigError as e:
        _format_config_error("Mutator error", str(e))
        raise typer.Exit(1) from None


def _resolve_store_or_exit(
    config: RoomflushSettings,
    store: Path | None,
) -> tuple[JsonDirectoryStore, DocumentQuery]:
    from roomflush.plugins.stores import DocumentQuery, JsonDirectoryStore

    if store is None and config.store is None:
        typer.echo("Error: no document store configured (set 'store.path' in settings or pass --store).", err=True)
        raise typer.Exit(1)
    store_path = store if store is not None else Path(config.store.path)  # type: ignore[union-attr]
    try:
        document_store = JsonDirectoryStore(store_path.expanduser(), create=False)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    if config.store is not None:
        query = DocumentQuery(id_prefix=config.store.id_prefix, metadata=dict(config.store.metadata))
    else:
        query = DocumentQuery()
    return document_store, query


async def _execute(
    store: JsonDirectoryStore,
    mutate_fn: MutationFn,
    run_config: RunConfig,
    query: DocumentQuery,
) -> RunResult:
    """Run against ``store``, turning SIGINT into an abort request."""
    from roomflush.engine import mass_mutate

    abort_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Signal handlers are unavailable on some platforms and outside the main thread
    with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
        loop.add_signal_handler(signal.SIGINT, abort_event.set)
    try:
        return await mass_mutate(store, store, mutate_fn, run_config, predicate=query, abort_event=abort_event)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.remove_signal_handler(signal.SIGINT)


def _print_console_result(result: RunResult) -> None:
    symbol = "✓" if not result.failed and result.error is None else "✗"
    typer.echo(
        f"{symbol} {result.stop_reason.value}: {result.processed} processed | "
        f"✓{len(result.succeeded)} succeeded | ✗{len(result.failed)} failed | "
        f"⏹{len(result.cancelled)} cancelled | {result.skipped} skipped | "
        f"{result.elapsed_seconds:.2f}s"
    )
    for doc in result.documents:
        if doc.error is not None:
            typer.echo(f"  - {doc.document_id}: {doc.error_type}: {doc.error}", err=True)
    if result.error is not None:
        typer.echo(f"Run aborted: {result.error}", err=True)


def _result_payload(result: RunResult) -> dict[str, Any]:
    payload = result.summary()
    payload["documents"] = [
        {
            "document_id": doc.document_id,
            "outcome": doc.outcome.value,
            "writes_recorded": doc.writes_recorded,
            "writes_flushed": doc.writes_flushed,
            "flush_count": doc.flush_count,
            "error": doc.error,
            "error_type": doc.error_type,
        }
        for doc in result.documents
    ]
    return payload


@app.command()
def run(
    ctx: typer.Context,
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    mutator: str | None = typer.Option(
        None,
        "--mutator",
        "-m",
        help="Mutation function import path (module:function). Overrides settings.",
    ),
    store: Path | None = typer.Option(
        None,
        "--store",
        help="Document directory. Overrides store.path in settings.",
    ),
    app_dir: Path = typer.Option(
        Path("."),
        "--app-dir",
        help="Directory added to the import path before importing the mutator.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Apply a mutation function to every matching document.

    Exits 0 when no document failed, 1 otherwise.
    """
    from roomflush.core.logging import configure_logging

    config = _load_settings_or_exit(settings)

    flags = ctx.obj or {}
    if not flags.get("verbose") and not flags.get("json_logs"):
        configure_logging(json_output=config.logging.json_output, level=config.logging.level)

    mutate_fn = _resolve_mutator_or_exit(mutator or config.mutator, app_dir)
    document_store, query = _resolve_store_or_exit(config, store)

    result = asyncio.run(_execute(document_store, mutate_fn, config.run, query))

    if output_format == "json":
        typer.echo(json.dumps(_result_payload(result)))
    else:
        _print_console_result(result)

    if result.failed or result.error is not None:
        raise typer.Exit(1)


@app.command()
def validate(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    mutator: str | None = typer.Option(
        None,
        "--mutator",
        "-m",
        help="Mutation function import path (module:function). Overrides settings.",
    ),
    app_dir: Path = typer.Option(
        Path("."),
        "--app-dir",
        help="Directory added to the import path before importing the mutator.",
    ),
) -> None:
    """Validate settings and the mutator import without running."""
    config = _load_settings_or_exit(settings)
    _resolve_mutator_or_exit(mutator or config.mutator, app_dir)

    typer.echo("Configuration valid.")
    typer.echo(f"  Concurrency: {config.run.concurrency}")
    typer.echo(f"  Flush interval: {config.run.flush_interval_ms}ms")
    if config.run.timeout_seconds is not None:
        typer.echo(f"  Timeout: {config.run.timeout_seconds}s")
    elif config.run.deadline_at is not None:
        typer.echo(f"  Deadline: {config.run.deadline_at.isoformat()}")
    if config.store is not None:
        typer.echo(f"  Store: {config.store.path}")


if __name__ == "__main__":
    app()
