"""shellcast exceptions.

shellcast v0.1.0
"""

from __future__ import annotations

import os
from typing import Sequence

__all__ = [
    "ShellError",
    "ShellLaunchError",
    "ShellNotStartedError",
]


class ShellError(Exception):
    """Base exception for shellcast."""
    pass


class ShellLaunchError(ShellError, OSError):
    """The operating system could not start the process.

    Attributes:
        command: Command tokens that were passed to the OS
        directory: Working directory requested for the process (or None)
    """

    def __init__(
        self,
        command: Sequence[str],
        directory: str | os.PathLike[str] | None = None,
        cause: OSError | None = None,
    ) -> None:
        self.command = tuple(command)
        self.directory = directory
        reason = (cause.strerror or str(cause)) if cause is not None else "unknown error"
        message = f"Cannot launch {' '.join(self.command)!r}: {reason}"
        if directory is not None:
            message += f" (cwd={os.fspath(directory)})"
        if cause is not None and cause.errno is not None:
            super().__init__(cause.errno, message)
        else:
            super().__init__(message)


class ShellNotStartedError(ShellError, RuntimeError):
    """An operation needs a running process but the shell was not launched."""
    pass
