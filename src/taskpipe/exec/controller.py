from __future__ import annotations

import asyncio
import os
import shutil
import signal
import sys
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext, suppress
from dataclasses import dataclass
from pathlib import Path

from taskpipe.config.registry import TaskRegistry
from taskpipe.dag.resolve import resolve
from taskpipe.exec.monitor import CompletionMonitor
from taskpipe.exec.runner import TaskInstance, start_task
from taskpipe.exec.workspace import scratch_workspace
from taskpipe.report.status import StatusReporter
from taskpipe.util.errors import (
    ConfigurationError,
    ExecutionError,
    MissingEnvironmentError,
    RunFailedError,
)
from taskpipe.util.paths import output_slot

STDOUT_DESTINATION = "-"


@dataclass(slots=True)
class RunResult:
    requested: str
    order: list[str]
    outcomes: dict[str, bool]
    workspace: Path


def check_required_env(registry: TaskRegistry) -> None:
    for variable in registry.required_env:
        if variable not in os.environ:
            raise MissingEnvironmentError(variable)


def _check_single_consumer(registry: TaskRegistry, order: list[str]) -> None:
    consumers = Counter(
        registry.get(name).stdin_dep for name in order if registry.get(name).stdin_dep
    )
    for producer, count in consumers.items():
        if count > 1:
            raise ConfigurationError(f"task '{producer}' feeds stdin of {count} tasks; at most 1")


def deliver_output(slot: Path, destination: str | None) -> None:
    if destination is None:
        return
    if destination == STDOUT_DESTINATION:
        sys.stdout.flush()
        with slot.open("rb") as src:
            shutil.copyfileobj(src, sys.stdout.buffer)
        sys.stdout.buffer.flush()
        return
    shutil.copyfile(slot, destination)


@contextmanager
def _forward_signals(monitor: CompletionMonitor) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sig, monitor.interrupt)
            installed.append(sig)
    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def _start_all(
    registry: TaskRegistry, order: list[str], workspace: Path, monitor: CompletionMonitor
) -> None:
    for name in order:
        if monitor.cancelled:
            break
        await start_task(
            TaskInstance(registry.get(name), workspace), monitor.handles, monitor.followers
        )


async def run_pipeline(
    registry: TaskRegistry,
    requested: str,
    *,
    destination: str | None = None,
    reporter: StatusReporter | None = None,
    handle_signals: bool = False,
    workspace_parent: Path | None = None,
) -> RunResult:
    """Run ``requested`` and everything it depends on.

    Raises a ``ConfigurationError`` or ``CycleError`` before anything starts,
    ``ExecutionError`` if a task process cannot be created, and
    ``RunFailedError`` when any task fails or the run is interrupted. The
    workspace is removed in every case.
    """
    reporter = reporter if reporter is not None else StatusReporter()
    check_required_env(registry)
    order = resolve(registry, requested)
    _check_single_consumer(registry, order)

    with scratch_workspace(workspace_parent) as workspace:
        reporter.workspace_created(workspace)
        monitor = CompletionMonitor(reporter)
        with _forward_signals(monitor) if handle_signals else nullcontext():
            try:
                await _start_all(registry, order, workspace, monitor)
            except ExecutionError:
                monitor.terminate_alive()
                await monitor.wait()
                raise
            success = await monitor.wait()
        if not success:
            raise RunFailedError(list(monitor.failed), interrupted=monitor.interrupted)
        deliver_output(output_slot(workspace, requested), destination)
        outcomes = {name: bool(handle.success) for name, handle in monitor.handles.items()}
        return RunResult(requested=requested, order=order, outcomes=outcomes, workspace=workspace)

