from __future__ import annotations

import asyncio
import os
import threading
from contextlib import suppress
from pathlib import Path

CHUNK_SIZE = 65536
POLL_INTERVAL_SEC = 0.05


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class StreamFollower:
    """Relay a producer's output slot into a pipe while the producer writes it.

    The consumer reads from ``read_fd``. After ``detach`` the remaining bytes
    are drained and the pipe is closed, which the consumer sees as end of input.
    """

    def __init__(self, producer: str, source: Path, consumer: str | None = None) -> None:
        self.producer = producer
        self.consumer = consumer
        self.source = source
        self.read_fd, self._write_fd = os.pipe()
        self._stop = threading.Event()
        self._done = asyncio.Event()
        self.error: OSError | None = None
        self.bytes_forwarded = 0

    def start(self) -> None:
        loop = asyncio.get_running_loop()

        def _target() -> None:
            try:
                self._pump()
            finally:
                loop.call_soon_threadsafe(self._done.set)

        threading.Thread(
            target=_target, name=f"taskpipe-follow-{self.producer}", daemon=True
        ).start()

    def _pump(self) -> None:
        try:
            with self.source.open("rb") as src:
                while True:
                    stopping = self._stop.is_set()
                    chunk = src.read(CHUNK_SIZE)
                    if chunk:
                        _write_all(self._write_fd, chunk)
                        self.bytes_forwarded += len(chunk)
                        continue
                    if stopping:
                        break
                    self._stop.wait(POLL_INTERVAL_SEC)
        except BrokenPipeError:
            # consumer is gone
            pass
        except OSError as exc:
            self.error = exc
        finally:
            with suppress(OSError):
                os.close(self._write_fd)

    def take_reader(self) -> int:
        """Hand the read end to the consumer, which then owns closing it."""
        fd, self.read_fd = self.read_fd, -1
        if fd < 0:
            raise RuntimeError(f"output of '{self.producer}' is already being consumed")
        return fd

    def detach(self) -> None:
        self._stop.set()

    async def join(self) -> None:
        await self._done.wait()


def attach(producer: str, source: Path, *, consumer: str | None = None) -> StreamFollower:
    """Start following ``source`` from its first byte."""
    follower = StreamFollower(producer, source, consumer)
    follower.start()
    return follower
