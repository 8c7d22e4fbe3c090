"""Process supervisor that multicasts stdout/stderr to listeners.

shellcast runtime module v0.1.0

This module provides:
- Launching a command with all three standard streams piped
- One daemon reader thread per output stream, dispatching decoded chunks to
  the stream's current listener tree
- Built-in capture of everything read, retrievable at any time
- A buffered text writer into the child's stdin

Key design points:
- Readers fetch the listener tree from a ``ListenerSlot`` on every chunk, so
  listeners added after launch still receive later output
- ``launch`` waits for the process, not for the readers; the last chunks
  may still be in flight when it returns (see ``wait_for_readers``)
- Stream read failures end the reader quietly: they are logged and passed
  to ``on_stream_error`` but never raised to the caller
"""

from __future__ import annotations

import codecs
import io
import logging
import os
import subprocess
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import IO, Any, TextIO

import anyio

from ..config import Config, get_config
from ..errors import ShellLaunchError, ShellNotStartedError
from ..listeners import FunctionListener, Listener, ListenerSlot
from .capture import CaptureBuffer
from .termination import IS_WINDOWS, terminate_process

__all__ = [
    "INTERRUPTED_EXIT_CODE",
    "Shell",
    "StreamErrorHandler",
]

logger = logging.getLogger(__name__)

# Exit code reported by launch() when the wait is interrupted
INTERRUPTED_EXIT_CODE = -1

StreamErrorHandler = Callable[[str, OSError], None]


class Shell:
    """Runs a program and multicasts its output to listeners.

    Example:
        shell = Shell("git", "status", "--short")
        shell.add_output_listener(FunctionListener(print))
        code = shell.launch("/path/to/repo")
        shell.wait_for_readers(timeout=1.0)
        if shell.has_error():
            log.warning(shell.get_error())

    Attributes:
        config: Settings for reading, decoding and termination
    """

    def __init__(
        self,
        executable: str,
        *params: str,
        config: Config | None = None,
        env: Mapping[str, str] | None = None,
        on_stream_error: StreamErrorHandler | None = None,
    ) -> None:
        """Create a shell for ``executable`` with optional arguments.

        Args:
            executable: Program, script or command to run
            *params: Arguments passed to the program
            config: Settings (default: global config from the environment)
            env: Environment for the child (None = inherit parent)
            on_stream_error: Called as ``(stream_name, exc)`` when reading
                stdout or stderr fails
        """
        self.config = config if config is not None else get_config()
        self._command: list[str] = []
        self._env = dict(env) if env is not None else None
        self._on_stream_error = on_stream_error

        self._output = CaptureBuffer()
        self._error = CaptureBuffer()
        self._output_listeners = ListenerSlot()
        self._error_listeners = ListenerSlot()
        self._output_listeners.add(FunctionListener(self._output.append))
        self._error_listeners.add(FunctionListener(self._error.append))

        self._process: subprocess.Popen | None = None
        self._writer: TextIO | None = None
        self._readers: tuple[threading.Thread, ...] = ()

        self.add_param(executable, *params)

    # ------------------------------------------------------------------
    # Command
    # ------------------------------------------------------------------

    def add_param(self, first: str, *others: str) -> None:
        """Append one or more arguments to the command."""
        self._command.append(first)
        self._command.extend(others)

    def add_params(self, params: Iterable[str]) -> None:
        """Append every argument in ``params`` to the command."""
        self._command.extend(params)

    @property
    def command(self) -> tuple[str, ...]:
        """Snapshot of the command tokens."""
        return tuple(self._command)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_output_listener(self, listener: Listener) -> Listener:
        """Register ``listener`` for stdout chunks. Returns ``listener``."""
        self._output_listeners.add(_check_listener(listener))
        return listener

    def remove_output_listener(self, listener: Listener) -> None:
        self._output_listeners.remove(listener)

    def add_error_listener(self, listener: Listener) -> Listener:
        """Register ``listener`` for stderr chunks. Returns ``listener``."""
        self._error_listeners.add(_check_listener(listener))
        return listener

    def remove_error_listener(self, listener: Listener) -> None:
        self._error_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Launching
    # ------------------------------------------------------------------

    def launch_async(self, directory: str | os.PathLike[str] | None = None) -> subprocess.Popen:
        """Start the process and its stream readers without waiting.

        The caller owns the returned process: call ``wait()`` on it (or use
        ``launch``) to get the exit code.

        Args:
            directory: Working directory for the process (None = current)

        Returns:
            The running process

        Raises:
            ShellLaunchError: If the OS cannot start the process
            ValueError: If the configured encoding or decode error handler
                is unknown (checked before anything is started)
        """
        self._check_codecs()
        command = list(self._command)
        kwargs = self._build_subprocess_kwargs()

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=directory,
                **kwargs,
            )
        except OSError as e:
            logger.debug(f"Failed to start {command[0]!r}: {e}")
            raise ShellLaunchError(command, directory, e) from e

        logger.debug(f"Started subprocess pid={process.pid} argv={command[0]} cwd={directory}")

        error_reader = threading.Thread(
            target=self._read_stream,
            args=(process, process.stderr, self._error_listeners, "stderr"),
            name=f"shellcast-stderr-{process.pid}",
            daemon=True,
        )
        output_reader = threading.Thread(
            target=self._read_stream,
            args=(process, process.stdout, self._output_listeners, "stdout"),
            name=f"shellcast-stdout-{process.pid}",
            daemon=True,
        )

        self._process = process
        self._writer = io.TextIOWrapper(process.stdin, encoding=self.config.encoding)
        self._readers = (error_reader, output_reader)

        error_reader.start()
        output_reader.start()

        return process

    def launch(self, directory: str | os.PathLike[str] | None = None) -> int:
        """Start the process and block until it exits.

        Args:
            directory: Working directory for the process (None = current)

        Returns:
            The exit code, or INTERRUPTED_EXIT_CODE (-1) if the wait was
            interrupted by KeyboardInterrupt

        Raises:
            ShellLaunchError: If the OS cannot start the process
        """
        process = self.launch_async(directory)
        try:
            returncode = process.wait()
        except KeyboardInterrupt:
            logger.warning(f"Interrupted while waiting for pid={process.pid}")
            return INTERRUPTED_EXIT_CODE
        logger.debug(f"Subprocess completed pid={process.pid} returncode={returncode}")
        return returncode

    async def run(self, directory: str | os.PathLike[str] | None = None) -> int:
        """Start the process and wait for it without blocking the event loop.

        If the awaiting task is cancelled, the process is terminated (shielded
        from the cancellation) before the cancellation propagates.

        Args:
            directory: Working directory for the process (None = current)

        Returns:
            The exit code

        Raises:
            ShellLaunchError: If the OS cannot start the process
        """
        process = self.launch_async(directory)
        try:
            returncode = await anyio.to_thread.run_sync(process.wait, abandon_on_cancel=True)
        except anyio.get_cancelled_exc_class():
            logger.debug(f"run() cancelled, terminating pid={process.pid}")
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(self.terminate)
            raise
        logger.debug(f"Subprocess completed pid={process.pid} returncode={returncode}")
        return returncode

    def _check_codecs(self) -> None:
        """Validate the stream codec settings before spawning anything."""
        try:
            codecs.lookup(self.config.encoding)
        except LookupError as e:
            raise ValueError(f"Unknown encoding: {self.config.encoding!r}") from e
        try:
            codecs.lookup_error(self.config.decode_errors)
        except LookupError as e:
            raise ValueError(
                f"Unknown decode error handler: {self.config.decode_errors!r}"
            ) from e

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific Popen kwargs."""
        kwargs: dict[str, Any] = {}

        if self._env is not None:
            kwargs["env"] = self._env

        if self.config.new_session:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True

        return kwargs

    # ------------------------------------------------------------------
    # Running process
    # ------------------------------------------------------------------

    @property
    def process(self) -> subprocess.Popen | None:
        """The launched process, or None before launch."""
        return self._process

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def get_input(self) -> TextIO:
        """Writer into the process's stdin.

        Writes are buffered: call ``flush()`` to deliver them, or ``close()``
        (or use it as a context manager) to also signal end of input.

        Raises:
            ShellNotStartedError: If the process was not launched yet
        """
        if self._writer is None:
            raise ShellNotStartedError("Process not yet started!")
        return self._writer

    def terminate(
        self,
        term_timeout: float | None = None,
        kill_timeout: float | None = None,
    ) -> int | None:
        """Terminate the process, escalating to a kill after ``term_timeout``.

        Returns:
            The exit status, or None if the process could not be stopped

        Raises:
            ShellNotStartedError: If the process was not launched yet
        """
        if self._process is None:
            raise ShellNotStartedError("Process not yet started!")
        return terminate_process(
            self._process,
            isolated=self.config.new_session,
            term_timeout=self.config.term_timeout if term_timeout is None else term_timeout,
            kill_timeout=self.config.kill_timeout if kill_timeout is None else kill_timeout,
        )

    def wait_for_readers(self, timeout: float | None = None) -> bool:
        """Wait until both stream readers have finished.

        Args:
            timeout: Maximum seconds to wait in total (None = no limit)

        Returns:
            True if both readers are done

        Raises:
            ShellNotStartedError: If the process was not launched yet
        """
        if self._process is None:
            raise ShellNotStartedError("Process not yet started!")
        deadline = None if timeout is None else time.monotonic() + timeout
        for reader in self._readers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            reader.join(remaining)
        return not any(reader.is_alive() for reader in self._readers)

    # ------------------------------------------------------------------
    # Captured text
    # ------------------------------------------------------------------

    def get_output(self) -> str:
        """Everything read from stdout so far."""
        return self._output.getvalue()

    def get_error(self) -> str:
        """Everything read from stderr so far."""
        return self._error.getvalue()

    def has_output(self) -> bool:
        return bool(self._output)

    def has_error(self) -> bool:
        return bool(self._error)

    # ------------------------------------------------------------------
    # Stream readers
    # ------------------------------------------------------------------

    def _read_stream(
        self,
        process: subprocess.Popen,
        stream: IO[bytes],
        listeners: ListenerSlot,
        name: str,
    ) -> None:
        """Drain ``stream`` into ``listeners`` until EOF or a read error."""
        decoder = codecs.getincrementaldecoder(self.config.encoding)(
            errors=self.config.decode_errors
        )
        chunk_size = self.config.chunk_size
        logger.debug(f"Reader started stream={name} pid={process.pid}")

        try:
            with stream:
                while True:
                    chunk = stream.read1(chunk_size)
                    if not chunk:
                        break
                    text = decoder.decode(chunk)
                    if text:
                        listeners.get().receive(text)

                text = decoder.decode(b"", final=True)
                if text:
                    listeners.get().receive(text)

        except OSError as e:
            logger.warning(f"Error reading {name} of pid={process.pid}: {e}", exc_info=True)
            self._report_stream_error(name, e)
            return
        except Exception:
            logger.exception(f"Reader for {name} of pid={process.pid} stopped")
            return

        logger.debug(f"Reader finished stream={name} pid={process.pid}")

    def _report_stream_error(self, name: str, error: OSError) -> None:
        if self._on_stream_error is None:
            return
        try:
            self._on_stream_error(name, error)
        except Exception as e:
            logger.warning(f"Error in stream error callback: {e}")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return " ".join(self._command)

    def __repr__(self) -> str:
        pid = self._process.pid if self._process is not None else None
        return f"Shell(command={self._command!r}, pid={pid})"


def _check_listener(listener: Listener) -> Listener:
    if listener is not None and not isinstance(listener, Listener):
        raise TypeError(
            f"{type(listener).__name__} has no receive() method; "
            "wrap plain callables in FunctionListener"
        )
    return listener
