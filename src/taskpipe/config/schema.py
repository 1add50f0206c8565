from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from taskpipe.util.paths import script_path


@dataclass(slots=True)
class TaskContext:
    """What an in-process body sees while it runs."""

    name: str
    env: Mapping[str, str]
    stdin: BinaryIO
    stdout: BinaryIO
    workspace: Path
    cancelled: threading.Event = field(default_factory=threading.Event)


@dataclass(slots=True, frozen=True)
class CommandBody:
    argv: tuple[str, ...]

    def command(self, workspace: Path, name: str) -> list[str]:
        return list(self.argv)


@dataclass(slots=True, frozen=True)
class ScriptBody:
    source: str
    interpreter: str = "bash"

    def command(self, workspace: Path, name: str) -> list[str]:
        path = script_path(workspace, name)
        path.write_text(self.source, encoding="utf-8")
        return [self.interpreter, str(path)]


@dataclass(slots=True, frozen=True)
class CallableBody:
    fn: Callable[[TaskContext], bool]


TaskBody = CommandBody | ScriptBody | CallableBody


@dataclass(slots=True, frozen=True)
class TaskSpec:
    name: str
    body: TaskBody
    stdin_dep: str | None = None
    file_deps: frozenset[str] = frozenset()

    @property
    def dependencies(self) -> frozenset[str]:
        """Every task this one waits for in the graph."""
        if self.stdin_dep is None:
            return self.file_deps
        return self.file_deps | {self.stdin_dep}

    @property
    def runs_in_process(self) -> bool:
        return isinstance(self.body, CallableBody)
