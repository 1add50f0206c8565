from __future__ import annotations

import asyncio
import os
import shutil
import sys
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from taskpipe.config.schema import CallableBody, TaskContext, TaskSpec
from taskpipe.exec.follow import StreamFollower, attach
from taskpipe.exec.handle import ProcessHandle, RunHandle, ThreadHandle
from taskpipe.util.errors import ExecutionError
from taskpipe.util.paths import output_slot

GATE_SCRIPT = Path(__file__).with_name("gate.py")


@dataclass(slots=True)
class TaskInstance:
    spec: TaskSpec
    workspace: Path

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def output_path(self) -> Path:
        return output_slot(self.workspace, self.spec.name)

    def dependency_env(self) -> dict[str, str]:
        """One variable per file dependency, pointing at its output slot."""
        return {
            dep: str(output_slot(self.workspace, dep).resolve())
            for dep in sorted(self.spec.file_deps)
        }


def _close_quietly(fd: int | None) -> None:
    if fd is not None:
        with suppress(OSError):
            os.close(fd)


def _resolve_command(argv: list[str], env: dict[str, str]) -> list[str]:
    executable = shutil.which(argv[0], path=env.get("PATH"))
    if executable is None:
        raise ExecutionError(f"command not found: {argv[0]}")
    return [executable, *argv[1:]]


async def _spawn(
    instance: TaskInstance,
    argv: list[str],
    env: dict[str, str],
    stdin_fd: int | None,
    *,
    gated: bool,
) -> ProcessHandle:
    gate_r: int | None = None
    gate_w: int | None = None
    if gated:
        gate_r, gate_w = os.pipe()
        argv = [sys.executable, str(GATE_SCRIPT), str(gate_r), *argv]
    try:
        with instance.output_path.open("ab") as out:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL if stdin_fd is None else stdin_fd,
                stdout=out,
                env=env,
                start_new_session=True,
                pass_fds=() if gate_r is None else (gate_r,),
            )
    except (OSError, ValueError) as exc:
        if gate_w is not None:
            os.close(gate_w)
        raise ExecutionError(f"failed to start task '{instance.name}': {exc}") from exc
    finally:
        if gate_r is not None:
            os.close(gate_r)
        if stdin_fd is not None:
            os.close(stdin_fd)
    return ProcessHandle(instance.name, process, gate_w)


async def _release_when_ready(handle: RunHandle, dependencies: list[RunHandle]) -> None:
    # completion, not success: failures are acted on by the monitor before settling
    for dep in dependencies:
        await dep.settled.wait()
    handle.resume()


def _start_in_process(
    instance: TaskInstance, body: CallableBody, stdin_fd: int | None, *, gated: bool
) -> ThreadHandle:
    if stdin_fd is None:
        stdin = open(os.devnull, "rb")
    else:
        stdin = os.fdopen(stdin_fd, "rb")
    context = TaskContext(
        name=instance.name,
        env=instance.dependency_env(),
        stdin=stdin,
        stdout=instance.output_path.open("ab", buffering=0),
        workspace=instance.workspace,
    )
    return ThreadHandle(instance.name, body.fn, context, gated=gated)


async def _start_process(
    instance: TaskInstance, stdin_fd: int | None, *, gated: bool
) -> ProcessHandle:
    env = os.environ.copy()
    env.update(instance.dependency_env())
    body = instance.spec.body
    assert not isinstance(body, CallableBody)
    try:
        argv = _resolve_command(body.command(instance.workspace, instance.name), env)
    except ExecutionError:
        _close_quietly(stdin_fd)
        raise
    except OSError as exc:
        _close_quietly(stdin_fd)
        raise ExecutionError(f"failed to prepare task '{instance.name}': {exc}") from exc
    return await _spawn(instance, argv, env, stdin_fd, gated=gated)


async def start_task(
    instance: TaskInstance,
    handles: dict[str, RunHandle],
    followers: dict[str, StreamFollower],
) -> RunHandle:
    """Start one task and register its handle.

    Dependencies must already be in ``handles``. A task with file
    dependencies is created right away but held at its gate until every one
    of them has completed.
    """
    spec = instance.spec
    instance.output_path.write_bytes(b"")

    stdin_fd: int | None = None
    if spec.stdin_dep is not None:
        follower = attach(
            spec.stdin_dep, output_slot(instance.workspace, spec.stdin_dep), consumer=spec.name
        )
        followers[spec.stdin_dep] = follower
        stdin_fd = follower.take_reader()

    gate_on = [handles[dep] for dep in sorted(spec.file_deps)]
    gated = bool(gate_on)
    handle: RunHandle
    if spec.runs_in_process:
        assert isinstance(spec.body, CallableBody)
        handle = _start_in_process(instance, spec.body, stdin_fd, gated=gated)
    else:
        handle = await _start_process(instance, stdin_fd, gated=gated)
    if gated:
        handle.gate_waiter = asyncio.create_task(_release_when_ready(handle, gate_on))
    handles[spec.name] = handle
    return handle
