"""Per-run table of declared tasks."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator

from taskpipe.config.schema import TaskBody, TaskSpec
from taskpipe.util.errors import ConfigurationError, DuplicateTaskError, UnknownTaskError

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")
_ENV_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_name(name: object, what: str) -> str:
    if not isinstance(name, str) or _NAME_PATTERN.fullmatch(name) is None:
        raise ConfigurationError(f"{what} must match {_NAME_PATTERN.pattern}: {name!r}")
    return name


class TaskRegistry:
    """Holds task declarations for a single run.

    Declarations come in two shapes: ``depends_on=[...]`` (file dependencies
    only) and ``stdin=..., files=[...]``. Both normalize to one ``TaskSpec``.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, TaskSpec] = {}
        self._required_env: list[str] = []

    def register(
        self,
        name: str,
        body: TaskBody,
        *,
        stdin: str | None = None,
        files: Iterable[str] = (),
        depends_on: Iterable[str] | None = None,
    ) -> TaskSpec:
        _check_name(name, "task name")
        if name in self._tasks:
            raise DuplicateTaskError(name)
        if stdin is not None:
            _check_name(stdin, f"task '{name}' stdin dependency")
        file_deps = set(files)
        if depends_on is not None:
            file_deps.update(depends_on)
        for dep in file_deps:
            _check_name(dep, f"task '{name}' dependency")
        if name == stdin or name in file_deps:
            raise ConfigurationError(f"task '{name}' must not depend on itself")
        spec = TaskSpec(name=name, body=body, stdin_dep=stdin, file_deps=frozenset(file_deps))
        self._tasks[name] = spec
        return spec

    def require_env(self, variable: str) -> None:
        if not isinstance(variable, str) or _ENV_PATTERN.fullmatch(variable) is None:
            raise ConfigurationError(f"invalid environment variable name: {variable!r}")
        if variable not in self._required_env:
            self._required_env.append(variable)

    @property
    def required_env(self) -> list[str]:
        return list(self._required_env)

    def get(self, name: str) -> TaskSpec:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[TaskSpec]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)
