"""shellcast - run a program and multicast its output to listeners.

Environment variables:
    SHELLCAST_CHUNK_SIZE: bytes per stream read (default 8192)
    SHELLCAST_ENCODING: stream encoding (default utf-8)
    SHELLCAST_NEW_SESSION: start children in their own session (default false)
    SHELLCAST_LOG_DEBUG: debug logging to a temp file (default false)

Usage:
    shellcast -- ls -la
"""

__version__ = "0.1.0"

from .errors import ShellError, ShellLaunchError, ShellNotStartedError
from .listeners import NULL_LISTENER, FunctionListener, Listener, ListenerPair
from .runtime import INTERRUPTED_EXIT_CODE, Shell

__all__ = [
    "__version__",
    "FunctionListener",
    "INTERRUPTED_EXIT_CODE",
    "Listener",
    "ListenerPair",
    "NULL_LISTENER",
    "Shell",
    "ShellError",
    "ShellLaunchError",
    "ShellNotStartedError",
]
