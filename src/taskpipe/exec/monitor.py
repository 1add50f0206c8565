from __future__ import annotations

import asyncio

from taskpipe.exec.follow import StreamFollower
from taskpipe.exec.handle import RunHandle
from taskpipe.report.status import StatusReporter


class CompletionMonitor:
    """Process task completions in the order they happen.

    Each handle gets a watcher that pushes it onto a single queue when it
    finishes. The first failure terminates every task still alive; draining
    continues until every handle has been seen.
    """

    def __init__(self, reporter: StatusReporter) -> None:
        self.reporter = reporter
        self.handles: dict[str, RunHandle] = {}
        self.followers: dict[str, StreamFollower] = {}
        self.failed: list[str] = []
        self.interrupted = False
        self._all_followers: list[StreamFollower] = []

    @property
    def cancelled(self) -> bool:
        return self.interrupted or bool(self.failed)

    def terminate_alive(self) -> None:
        for handle in self.handles.values():
            if handle.is_alive:
                handle.terminate()

    def interrupt(self) -> None:
        """Handle an external stop request for the whole run."""
        self.interrupted = True
        self.terminate_alive()

    def _settle(self, handle: RunHandle) -> None:
        follower = self.followers.pop(handle.name, None)
        if follower is not None:
            follower.detach()
        self.reporter.task_finished(handle)
        if not handle.success:
            first_failure = not self.failed
            self.failed.append(handle.name)
            if first_failure:
                self.terminate_alive()
        handle.settled.set()

    async def wait(self) -> bool:
        """Drain every handle and return True when all of them succeeded."""
        self._all_followers.extend(self.followers.values())
        queue: asyncio.Queue[RunHandle] = asyncio.Queue()

        async def _watch(handle: RunHandle) -> None:
            await handle.finished.wait()
            queue.put_nowait(handle)

        watchers = [asyncio.create_task(_watch(handle)) for handle in self.handles.values()]
        for _ in range(len(watchers)):
            self._settle(await queue.get())
        await asyncio.gather(*watchers)

        gate_waiters = [h.gate_waiter for h in self.handles.values() if h.gate_waiter is not None]
        await asyncio.gather(*gate_waiters)
        for follower in self.followers.values():
            follower.detach()
        await asyncio.gather(*(follower.join() for follower in self._all_followers))
        for follower in self._all_followers:
            if follower.error is not None:
                self._stream_failed(follower)
        return not self.failed and not self.interrupted

    def _stream_failed(self, follower: StreamFollower) -> None:
        # the consumer saw end of input early and may have reported success
        self.reporter.stream_failed(follower)
        name = follower.consumer or follower.producer
        if name not in self.failed:
            self.failed.append(name)
