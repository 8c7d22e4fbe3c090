"""Runtime module for launching processes and streaming their output.

This module provides the Shell supervisor, thread-safe capture buffers and
graceful process termination.
"""

from __future__ import annotations

from .capture import CaptureBuffer
from .shell import INTERRUPTED_EXIT_CODE, Shell, StreamErrorHandler
from .termination import terminate_process

__all__ = [
    "CaptureBuffer",
    "INTERRUPTED_EXIT_CODE",
    "Shell",
    "StreamErrorHandler",
    "terminate_process",
]
