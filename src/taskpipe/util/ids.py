"""ID generation utilities."""

from datetime import datetime
from secrets import token_hex


def new_run_id(now: datetime) -> str:
    """Create run id: YYYYMMDD-HHMMSS-<6chars>."""
    return f"{now:%Y%m%d-%H%M%S}-{token_hex(3)}"


def workspace_prefix(run_id: str) -> str:
    """Directory name prefix for a run's scratch workspace."""
    return f"taskpipe-{run_id}-"
