"""Graceful-then-forceful termination of a child process.

shellcast runtime module v0.1.0

Termination strategy:
1. Send SIGTERM (to the whole process group when the child was started in
   its own session) or CTRL_BREAK_EVENT on Windows
2. Wait up to term_timeout for graceful exit
3. Send SIGKILL (or kill() on Windows)
4. Wait up to kill_timeout for forced exit

Signalling the group is only safe when the child leads its own session,
otherwise killpg would hit our own process group; callers pass
``isolated=True`` only for children started with ``start_new_session``.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys

__all__ = ["IS_WINDOWS", "terminate_process"]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


def terminate_process(
    process: subprocess.Popen,
    *,
    isolated: bool = False,
    term_timeout: float = 2.0,
    kill_timeout: float = 1.0,
) -> int | None:
    """Terminate ``process``, escalating to a forced kill if needed.

    Args:
        process: The child process
        isolated: True if the child runs in its own session / process group
        term_timeout: Seconds to wait after the graceful signal
        kill_timeout: Seconds to wait after the forced kill

    Returns:
        The exit status, or None if the process survived both signals
    """
    if process.poll() is not None:
        return process.returncode

    pid = process.pid
    logger.debug(f"Terminating subprocess pid={pid}")

    try:
        if IS_WINDOWS:
            _windows_terminate(process, isolated)
        else:
            _posix_signal(process, signal.SIGTERM, isolated)

        try:
            returncode = process.wait(timeout=term_timeout)
            logger.debug(
                f"Subprocess terminated gracefully pid={pid} returncode={returncode}"
            )
            return returncode
        except subprocess.TimeoutExpired:
            pass

        logger.debug(f"Force killing subprocess pid={pid}")
        if IS_WINDOWS:
            process.kill()
        else:
            _posix_signal(process, signal.SIGKILL, isolated)

        try:
            returncode = process.wait(timeout=kill_timeout)
            logger.debug(f"Subprocess killed pid={pid} returncode={returncode}")
            return returncode
        except subprocess.TimeoutExpired:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")
            return None

    except ProcessLookupError:
        logger.debug(f"Subprocess already exited pid={pid}")
        return process.wait()


def _posix_signal(process: subprocess.Popen, sig: signal.Signals, isolated: bool) -> None:
    """Send ``sig`` to the child's process group, or to the child alone."""
    if not isolated:
        process.send_signal(sig)
        return
    try:
        pgid = os.getpgid(process.pid)
        os.killpg(pgid, sig)
        logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg failed, falling back to send_signal: {e}")
        process.send_signal(sig)


def _windows_terminate(process: subprocess.Popen, isolated: bool) -> None:
    """Send CTRL_BREAK_EVENT to an isolated group, else TerminateProcess."""
    if isolated:
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
            return
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
    process.terminate()
