from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from taskpipe.config.schema import CallableBody, CommandBody, ScriptBody, TaskContext, TaskSpec
from taskpipe.exec.follow import StreamFollower
from taskpipe.exec.handle import ProcessHandle, RunHandle, ThreadHandle
from taskpipe.exec.monitor import CompletionMonitor
from taskpipe.exec.runner import TaskInstance, start_task
from taskpipe.report.status import QuietReporter
from taskpipe.util.errors import ExecutionError


def _py(code: str) -> CommandBody:
    return CommandBody((sys.executable, "-c", code))


async def _start(
    spec: TaskSpec,
    workspace: Path,
    handles: dict[str, RunHandle],
    followers: dict[str, StreamFollower] | None = None,
) -> RunHandle:
    return await start_task(
        TaskInstance(spec, workspace), handles, followers if followers is not None else {}
    )


@pytest.mark.asyncio
async def test_ungated_process_writes_its_output_slot(tmp_path: Path) -> None:
    handles: dict[str, RunHandle] = {}
    handle = await _start(TaskSpec("a", _py("print('hello')")), tmp_path, handles)

    assert isinstance(handle, ProcessHandle)
    assert not handle.gated
    assert handles == {"a": handle}
    assert await asyncio.wait_for(handle.wait(), timeout=10) is True
    assert handle.exit_code == 0
    assert (tmp_path / "a.out").read_text(encoding="utf-8") == "hello\n"


@pytest.mark.asyncio
async def test_output_slot_exists_empty_before_body_writes(tmp_path: Path) -> None:
    handles: dict[str, RunHandle] = {}
    handle = await _start(TaskSpec("quiet", _py("pass")), tmp_path, handles)
    assert (tmp_path / "quiet.out").exists()
    await handle.wait()
    assert (tmp_path / "quiet.out").read_bytes() == b""


@pytest.mark.asyncio
async def test_failing_body_is_recorded_not_raised(tmp_path: Path) -> None:
    handles: dict[str, RunHandle] = {}
    handle = await _start(TaskSpec("bad", _py("raise SystemExit(3)")), tmp_path, handles)
    assert await handle.wait() is False
    assert handle.exit_code == 3


@pytest.mark.asyncio
async def test_missing_command_is_execution_error(tmp_path: Path) -> None:
    spec = TaskSpec("ghost", CommandBody(("__definitely_missing_command__",)))
    with pytest.raises(ExecutionError, match="command not found"):
        await _start(spec, tmp_path, {})


@pytest.mark.asyncio
async def test_gated_dependent_sees_settled_file_content(tmp_path: Path) -> None:
    producer = _py(
        "import sys, time\n"
        "sys.stdout.write('A'); sys.stdout.flush()\n"
        "time.sleep(0.5)\n"
        "sys.stdout.write('B')\n"
    )
    consumer = _py("import os; print(open(os.environ['a']).read())")
    monitor = CompletionMonitor(QuietReporter())

    await _start(TaskSpec("a", producer), tmp_path, monitor.handles)
    handle = await _start(
        TaskSpec("b", consumer, file_deps=frozenset({"a"})), tmp_path, monitor.handles
    )
    assert isinstance(handle, ProcessHandle)
    assert handle.gated
    assert handle.gate_waiter is not None

    assert await asyncio.wait_for(monitor.wait(), timeout=10) is True
    assert (tmp_path / "b.out").read_text(encoding="utf-8") == "AB\n"


def test_dependency_env_points_at_absolute_slots(tmp_path: Path) -> None:
    spec = TaskSpec("c", _py("pass"), stdin_dep="s", file_deps=frozenset({"a", "b"}))
    env = TaskInstance(spec, tmp_path).dependency_env()
    assert env == {
        "a": str((tmp_path / "a.out").resolve()),
        "b": str((tmp_path / "b.out").resolve()),
    }


@pytest.mark.asyncio
async def test_script_body_is_materialized_in_workspace(tmp_path: Path) -> None:
    handles: dict[str, RunHandle] = {}
    spec = TaskSpec("s", ScriptBody('echo "from script"', interpreter="sh"))
    handle = await _start(spec, tmp_path, handles)
    assert await handle.wait() is True
    assert (tmp_path / "s.bash").read_text(encoding="utf-8") == 'echo "from script"'
    assert (tmp_path / "s.out").read_text(encoding="utf-8") == "from script\n"


@pytest.mark.asyncio
async def test_callable_body_gets_context_and_writes_slot(tmp_path: Path) -> None:
    seen: dict[str, object] = {}

    def body(ctx: TaskContext) -> bool:
        seen["env"] = dict(ctx.env)
        seen["stdin"] = ctx.stdin.read()
        ctx.stdout.write(b"in-process\n")
        return True

    monitor = CompletionMonitor(QuietReporter())
    await _start(TaskSpec("a", _py("print(1)")), tmp_path, monitor.handles)
    handle = await _start(
        TaskSpec("b", CallableBody(body), file_deps=frozenset({"a"})), tmp_path, monitor.handles
    )
    assert isinstance(handle, ThreadHandle)

    assert await asyncio.wait_for(monitor.wait(), timeout=10) is True
    assert seen == {"env": {"a": str((tmp_path / "a.out").resolve())}, "stdin": b""}
    assert (tmp_path / "b.out").read_bytes() == b"in-process\n"


@pytest.mark.asyncio
async def test_callable_body_exception_is_a_task_failure(tmp_path: Path) -> None:
    def body(ctx: TaskContext) -> bool:
        raise ValueError("broken body")

    handles: dict[str, RunHandle] = {}
    handle = await _start(TaskSpec("x", CallableBody(body)), tmp_path, handles)
    assert await asyncio.wait_for(handle.wait(), timeout=10) is False
    assert isinstance(handle.error, ValueError)


@pytest.mark.asyncio
async def test_callable_body_sys_exit_is_a_task_failure(tmp_path: Path) -> None:
    def body(ctx: TaskContext) -> bool:
        sys.exit(1)

    handles: dict[str, RunHandle] = {}
    handle = await _start(TaskSpec("x", CallableBody(body)), tmp_path, handles)
    assert await asyncio.wait_for(handle.wait(), timeout=10) is False
    assert isinstance(handle.error, SystemExit)


@pytest.mark.asyncio
async def test_stdin_dependency_streams_while_producer_runs(tmp_path: Path) -> None:
    producer = _py(
        "import time\n"
        "for i in range(3):\n"
        "    print(f'line{i}', flush=True)\n"
        "    time.sleep(0.6)\n"
    )
    first_line: dict[str, object] = {}

    def consumer(ctx: TaskContext) -> bool:
        for raw in ctx.stdin:
            if not first_line:
                first_line["line"] = raw
                first_line["producer_so_far"] = (ctx.workspace / "a.out").read_bytes()
            ctx.stdout.write(b"> " + raw)
        return True

    monitor = CompletionMonitor(QuietReporter())
    await _start(TaskSpec("a", producer), tmp_path, monitor.handles, monitor.followers)
    await _start(
        TaskSpec("b", CallableBody(consumer), stdin_dep="a"),
        tmp_path,
        monitor.handles,
        monitor.followers,
    )
    assert "a" in monitor.followers

    assert await asyncio.wait_for(monitor.wait(), timeout=15) is True
    assert first_line["line"] == b"line0\n"
    assert b"line2" not in first_line["producer_so_far"]
    assert (tmp_path / "b.out").read_bytes() == b"> line0\n> line1\n> line2\n"
    assert monitor.followers == {}


@pytest.mark.asyncio
async def test_same_producer_as_stdin_and_file_dependency(tmp_path: Path) -> None:
    producer = _py("import time; print('data', flush=True); time.sleep(0.2); print('more')")
    consumer = _py(
        "import os, sys\n"
        "streamed = sys.stdin.read()\n"
        "settled = open(os.environ['a']).read()\n"
        "print('same' if streamed == settled == 'data\\nmore\\n' else 'differs')\n"
    )
    monitor = CompletionMonitor(QuietReporter())
    await _start(TaskSpec("a", producer), tmp_path, monitor.handles, monitor.followers)
    handle = await _start(
        TaskSpec("b", consumer, stdin_dep="a", file_deps=frozenset({"a"})),
        tmp_path,
        monitor.handles,
        monitor.followers,
    )
    assert isinstance(handle, ProcessHandle)
    assert handle.gated

    assert await asyncio.wait_for(monitor.wait(), timeout=10) is True
    assert (tmp_path / "b.out").read_text(encoding="utf-8") == "same\n"
