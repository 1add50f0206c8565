from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from taskpipe.config.loader import find_definition_file, load_definition
from taskpipe.config.registry import TaskRegistry
from taskpipe.exec.controller import run_pipeline
from taskpipe.report.status import StatusReporter
from taskpipe.util.errors import (
    ConfigurationError,
    CycleError,
    ExecutionError,
    RunFailedError,
)

app = typer.Typer(help="Run tasks in dependency order, handing outputs along as files or streams")
console = Console()
err_console = Console(stderr=True)


def _load_registry_or_exit(definition: Path | None) -> TaskRegistry:
    try:
        path = definition if definition is not None else find_definition_file(Path.cwd())
        return load_definition(path)
    except ConfigurationError as exc:
        err_console.print(f"[red]Definition error:[/red] {escape(str(exc))}")
        raise typer.Exit(2) from exc


def _render_deps(names: frozenset[str]) -> str:
    return ", ".join(sorted(names)) if names else "-"


@app.command()
def run(
    task: Annotated[str, typer.Argument(help="Task to run, after everything it depends on")],
    definition: Annotated[Path | None, typer.Option("--file", "-f", exists=True)] = None,
    output: Annotated[
        str | None,
        typer.Option("--output", "-o", help="Copy the task's output to a file, or '-' for stdout"),
    ] = None,
) -> None:
    registry = _load_registry_or_exit(definition)
    reporter = StatusReporter(err_console)
    try:
        asyncio.run(
            run_pipeline(
                registry,
                task,
                destination=output,
                reporter=reporter,
                handle_signals=True,
            )
        )
    except (ConfigurationError, CycleError) as exc:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        raise typer.Exit(2) from exc
    except ExecutionError as exc:
        err_console.print(f"[red]Run execution failed:[/red] {escape(str(exc))}")
        raise typer.Exit(2) from exc
    except RunFailedError as exc:
        reporter.run_failed(str(exc))
        raise typer.Exit(3) from exc
    except OSError as exc:
        err_console.print(f"[red]I/O error:[/red] {escape(str(exc))}")
        raise typer.Exit(2) from exc


@app.command("list")
def list_tasks(
    definition: Annotated[Path | None, typer.Option("--file", "-f", exists=True)] = None,
) -> None:
    registry = _load_registry_or_exit(definition)
    table = Table(title="Tasks")
    table.add_column("task")
    table.add_column("stdin")
    table.add_column("files")
    for spec in registry:
        table.add_row(spec.name, spec.stdin_dep or "-", _render_deps(spec.file_deps))
    console.print(table)


if __name__ == "__main__":
    app()
