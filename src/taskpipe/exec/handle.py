from __future__ import annotations

import asyncio
import os
import signal
import threading
import time
from collections.abc import Callable
from contextlib import suppress

from taskpipe.config.schema import TaskContext


class RunHandle:
    """Live reference to a started task.

    ``finished`` is set once the task is reaped. ``settled`` is set by the
    completion monitor after it has acted on that completion; gate waiters
    watch ``settled`` so a failure is handled before any dependent is released.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.finished = asyncio.Event()
        self.settled = asyncio.Event()
        self.success: bool | None = None
        self.terminated = False
        self.error: BaseException | None = None
        self.duration_sec: float | None = None
        self.gate_waiter: asyncio.Task[None] | None = None
        self._started = time.monotonic()

    @property
    def is_alive(self) -> bool:
        return not self.finished.is_set()

    async def wait(self) -> bool:
        await self.finished.wait()
        return bool(self.success)

    def resume(self) -> None:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError

    def _finish(self, success: bool) -> None:
        self.success = success
        self.duration_sec = round(time.monotonic() - self._started, 3)
        self.finished.set()


class ProcessHandle(RunHandle):
    """Handle for a task body running as an OS process in its own session."""

    def __init__(
        self, name: str, process: asyncio.subprocess.Process, gate_fd: int | None = None
    ) -> None:
        super().__init__(name)
        self.process = process
        self.exit_code: int | None = None
        self._gate_fd = gate_fd
        self._reaper = asyncio.create_task(self._reap())

    @property
    def gated(self) -> bool:
        return self._gate_fd is not None

    async def _reap(self) -> None:
        try:
            self.exit_code = await self.process.wait()
        finally:
            self._close_gate()
        self._finish(self.exit_code == 0)

    def _close_gate(self) -> None:
        fd, self._gate_fd = self._gate_fd, None
        if fd is not None:
            with suppress(OSError):
                os.close(fd)

    def resume(self) -> None:
        fd, self._gate_fd = self._gate_fd, None
        if fd is None:
            return
        try:
            with suppress(BrokenPipeError):
                os.write(fd, b"\n")
        finally:
            os.close(fd)

    def terminate(self) -> None:
        self.terminated = True
        # a closed gate alone keeps the body from ever starting
        self._close_gate()
        if self.process.returncode is not None:
            return
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(self.process.pid, signal.SIGTERM)


class ThreadHandle(RunHandle):
    """Handle for an in-process body run on its own thread."""

    def __init__(
        self,
        name: str,
        fn: Callable[[TaskContext], bool],
        context: TaskContext,
        *,
        gated: bool,
    ) -> None:
        super().__init__(name)
        self.context = context
        self._fn = fn
        self._gate = asyncio.Event()
        if not gated:
            self._gate.set()
        self._runner = asyncio.create_task(self._run())

    async def _run(self) -> None:
        success = False
        try:
            await self._gate.wait()
            if not self.context.cancelled.is_set():
                success = await self._call()
        finally:
            self.context.stdin.close()
            self.context.stdout.close()
        self._finish(success)

    async def _call(self) -> bool:
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[bool] = loop.create_future()

        def _target() -> None:
            try:
                result = bool(self._fn(self.context))
            except BaseException as exc:
                # SystemExit from a body ends only this task
                self.error = exc
                result = False
            loop.call_soon_threadsafe(outcome.set_result, result)

        threading.Thread(target=_target, name=f"taskpipe-{self.name}", daemon=True).start()
        return await outcome

    def resume(self) -> None:
        self._gate.set()

    def terminate(self) -> None:
        self.terminated = True
        self.context.cancelled.set()
        self._gate.set()
