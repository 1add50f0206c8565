from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.markup import escape

from taskpipe.exec.follow import StreamFollower
from taskpipe.exec.handle import RunHandle


class StatusReporter:
    """Terminal status lines for a run, written to stderr.

    Per-task lines only appear on an interactive terminal unless
    ``show_tasks`` is forced.
    """

    def __init__(self, console: Console | None = None, *, show_tasks: bool | None = None) -> None:
        self.console = console if console is not None else Console(stderr=True)
        self.show_tasks = self.console.is_terminal if show_tasks is None else show_tasks

    def workspace_created(self, workspace: Path) -> None:
        self.console.print(f"workspace: {escape(str(workspace))}", highlight=False)

    def task_finished(self, handle: RunHandle) -> None:
        if not self.show_tasks:
            return
        marker = "[green]✔[/green]" if handle.success else "[red]✘[/red]"
        line = f"{marker} [bold]{escape(handle.name)}[/bold]"
        if handle.duration_sec is not None:
            line += f" ({handle.duration_sec:.2f}s)"
        if handle.terminated:
            line += " [yellow](terminated)[/yellow]"
        if handle.error is not None:
            line += f" [red]{escape(repr(handle.error))}[/red]"
        self.console.print(line, highlight=False)

    def stream_failed(self, follower: StreamFollower) -> None:
        target = follower.consumer or "consumer"
        self.console.print(
            f"[red]✘ stream {escape(follower.producer)} → {escape(target)} broke:[/red] "
            f"{escape(str(follower.error))}",
            highlight=False,
        )

    def run_failed(self, detail: str) -> None:
        self.console.print(f"[red]{escape(detail)}[/red]", highlight=False)


class QuietReporter(StatusReporter):
    """Reporter that prints nothing."""

    def __init__(self) -> None:
        super().__init__(Console(quiet=True), show_tasks=False)
