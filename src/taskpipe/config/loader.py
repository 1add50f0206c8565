from __future__ import annotations

import shlex
from pathlib import Path
from typing import Any

import yaml

from taskpipe.config.registry import TaskRegistry
from taskpipe.config.schema import CommandBody, ScriptBody, TaskBody
from taskpipe.util.errors import ConfigurationError

DEFINITION_FILENAMES = ("taskpipe.yaml", "taskpipe.yml")
_ALLOWED_ROOT_KEYS = {"tasks", "require_env"}
_ALLOWED_TASK_KEYS = {"cmd", "script", "interpreter", "stdin", "depends_on", "deps"}
_ALLOWED_DEPS_KEYS = {"stdin", "files"}


def _is_non_blank_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip()) and "\x00" not in value


def normalize_cmd(cmd: str | list[str]) -> list[str]:
    if isinstance(cmd, str):
        try:
            parts = shlex.split(cmd)
        except ValueError as exc:
            raise ConfigurationError(f"invalid cmd string: {exc}") from exc
        if not parts:
            raise ConfigurationError("cmd string must not be empty")
        if any("\x00" in part for part in parts):
            raise ConfigurationError("cmd must not contain null bytes")
        return parts
    if isinstance(cmd, list) and cmd and all(_is_non_blank_str(p) for p in cmd):
        return cmd
    raise ConfigurationError("cmd must be str or non-empty list[str]")


def _ensure_list_str(name: str, value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(_is_non_blank_str(v) for v in value):
        raise ConfigurationError(f"{name} must be list of non-empty strings")
    if len(set(value)) != len(value):
        raise ConfigurationError(f"{name} has duplicate entries")
    return value


def _parse_body(name: str, raw: dict[str, Any]) -> TaskBody:
    if ("cmd" in raw) == ("script" in raw):
        raise ConfigurationError(f"task '{name}' needs exactly one of cmd or script")
    if "cmd" in raw:
        if "interpreter" in raw:
            raise ConfigurationError(f"task '{name}' interpreter only applies to script")
        try:
            return CommandBody(tuple(normalize_cmd(raw["cmd"])))
        except ConfigurationError as exc:
            raise ConfigurationError(f"task '{name}': {exc}") from exc
    script = raw["script"]
    if not _is_non_blank_str(script):
        raise ConfigurationError(f"task '{name}' script must be non-empty string")
    interpreter = raw.get("interpreter", "bash")
    if not _is_non_blank_str(interpreter):
        raise ConfigurationError(f"task '{name}' interpreter must be non-empty string")
    return ScriptBody(script, interpreter=interpreter)


def _parse_deps(name: str, raw: dict[str, Any]) -> tuple[str | None, list[str]]:
    """Accept either flat ``stdin``/``depends_on`` keys or a nested ``deps`` mapping."""
    if "deps" in raw:
        if "stdin" in raw or "depends_on" in raw:
            raise ConfigurationError(f"task '{name}' mixes deps with stdin/depends_on")
        deps = raw["deps"]
        if not isinstance(deps, dict):
            raise ConfigurationError(f"task '{name}' deps must be mapping")
        unknown = set(deps) - _ALLOWED_DEPS_KEYS
        if unknown:
            raise ConfigurationError(f"task '{name}' deps has unknown fields: {sorted(unknown)}")
        stdin = deps.get("stdin")
        files = _ensure_list_str(f"task '{name}' deps.files", deps.get("files"))
    else:
        stdin = raw.get("stdin")
        files = _ensure_list_str(f"task '{name}' depends_on", raw.get("depends_on"))
    if stdin is not None and not _is_non_blank_str(stdin):
        raise ConfigurationError(f"task '{name}' stdin must be a single task name")
    return stdin, files


def _register_task(registry: TaskRegistry, name: Any, raw: Any) -> None:
    if not isinstance(name, str):
        raise ConfigurationError("task names must be strings")
    if not isinstance(raw, dict):
        raise ConfigurationError(f"task '{name}' must be mapping")
    unknown = set(raw) - _ALLOWED_TASK_KEYS
    if unknown:
        raise ConfigurationError(f"task '{name}' has unknown fields: {sorted(unknown)}")
    body = _parse_body(name, raw)
    stdin, files = _parse_deps(name, raw)
    registry.register(name, body, stdin=stdin, files=files)


def parse_definition(raw: Any, registry: TaskRegistry | None = None) -> TaskRegistry:
    registry = registry if registry is not None else TaskRegistry()
    if not isinstance(raw, dict):
        raise ConfigurationError("definition root must be a mapping")
    unknown_root = set(raw) - _ALLOWED_ROOT_KEYS
    if unknown_root:
        raise ConfigurationError(f"definition contains unknown fields: {sorted(unknown_root)}")
    tasks = raw.get("tasks")
    if not isinstance(tasks, dict) or not tasks:
        raise ConfigurationError("tasks must be a non-empty mapping")
    for variable in _ensure_list_str("require_env", raw.get("require_env")):
        registry.require_env(variable)
    for name, task in tasks.items():
        _register_task(registry, name, task)
    return registry


def load_definition(path: Path) -> TaskRegistry:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigurationError(f"definition file not found: {path}") from exc
    except UnicodeError as exc:
        raise ConfigurationError(f"failed to decode definition file as utf-8: {path}") from exc
    except OSError as exc:
        raise ConfigurationError(f"failed to read definition file: {path}") from exc
    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"failed to parse yaml: {exc}") from exc
    return parse_definition(raw)


def find_definition_file(start: Path) -> Path:
    """Look for a definition file in ``start`` and each of its parents."""
    current = start.resolve()
    for candidate_dir in (current, *current.parents):
        for filename in DEFINITION_FILENAMES:
            candidate = candidate_dir / filename
            if candidate.is_file():
                return candidate
    raise ConfigurationError(
        f"no {' or '.join(DEFINITION_FILENAMES)} found in {current} or its parents"
    )
