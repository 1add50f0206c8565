from __future__ import annotations

from pathlib import Path


def output_slot(workspace: Path, name: str) -> Path:
    """Return the file capturing a task's output."""
    return workspace / f"{name}.out"


def script_path(workspace: Path, name: str) -> Path:
    """Return the scratch script materialized for a script task."""
    return workspace / f"{name}.bash"
