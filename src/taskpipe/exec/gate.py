"""Hold a task process until its file dependencies have finished.

Run as ``python gate.py FD COMMAND...``. The launcher blocks reading one byte
from the inherited descriptor FD, then replaces itself with COMMAND. If the
descriptor is closed without a byte, COMMAND never runs.

This file is executed by path in a fresh interpreter and must not import
anything from the package.
"""

import os
import sys

EXIT_NOT_RELEASED = 75
EXIT_NOT_FOUND = 127


def main(argv: list[str]) -> int:
    fd = int(argv[1])
    command = argv[2:]
    with os.fdopen(fd, "rb", buffering=0) as gate:
        released = gate.read(1)
    if not released:
        return EXIT_NOT_RELEASED
    try:
        os.execvp(command[0], command)
    except OSError as exc:
        print(f"{command[0]}: {exc}", file=sys.stderr, flush=True)
    return EXIT_NOT_FOUND


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
