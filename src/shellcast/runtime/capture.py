"""Thread-safe text accumulation for captured process output."""

from __future__ import annotations

import threading

__all__ = ["CaptureBuffer"]


class CaptureBuffer:
    """Append-only text buffer shared between a reader thread and callers.

    Appends come from stream reader threads; reads may happen from any
    thread at any time and return everything appended so far.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._length = 0
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        if not text:
            return
        with self._lock:
            self._parts.append(text)
            self._length += len(text)

    def getvalue(self) -> str:
        with self._lock:
            if len(self._parts) > 1:
                # Collapse so repeated reads stay linear
                self._parts = ["".join(self._parts)]
            return self._parts[0] if self._parts else ""

    def __len__(self) -> int:
        with self._lock:
            return self._length

    def __bool__(self) -> bool:
        return len(self) > 0

    def __repr__(self) -> str:
        return f"CaptureBuffer(length={len(self)})"
