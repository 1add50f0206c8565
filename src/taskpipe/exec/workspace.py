from __future__ import annotations

import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from taskpipe.util.ids import new_run_id, workspace_prefix


def create_workspace(parent: Path | None = None) -> Path:
    """Allocate a private directory holding one output slot per task."""
    run_id = new_run_id(datetime.now().astimezone())
    return Path(tempfile.mkdtemp(prefix=workspace_prefix(run_id), dir=parent))


def destroy_workspace(workspace: Path) -> None:
    shutil.rmtree(workspace, ignore_errors=True)


@contextmanager
def scratch_workspace(parent: Path | None = None) -> Iterator[Path]:
    workspace = create_workspace(parent)
    try:
        yield workspace
    finally:
        destroy_workspace(workspace)
