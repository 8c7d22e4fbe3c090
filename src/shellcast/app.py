"""shellcast command-line application.

Runs a program, relays its stdout/stderr to ours as they arrive and exits
with the program's exit code.

Usage:
    shellcast [-C DIR] [--input TEXT] [--quiet] -- PROGRAM [ARGS...]
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence, TextIO

from .config import Config, get_config
from .errors import ShellLaunchError
from .listeners import FunctionListener
from .runtime import Shell

__all__ = ["main", "run_cli", "configure_logging"]

logger = logging.getLogger(__name__)

# 128 + SIGINT(2)
EXIT_INTERRUPTED = 130
# Conventional "command not found" status used by POSIX shells
EXIT_LAUNCH_FAILED = 127

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config) -> None:
    """Route shellcast logs to a temp file (debug mode) or stderr."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("shellcast").setLevel(log_level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shellcast",
        description="Run a program and relay its output.",
    )
    parser.add_argument("-C", "--directory", default=None, help="Working directory for the program")
    parser.add_argument("--input", default=None, help="Text written to the program's stdin")
    parser.add_argument("--quiet", action="store_true", help="Do not relay the program's output")
    parser.add_argument("program", help="Program to run")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the program")
    return parser


def _relay(stream_name: str) -> FunctionListener:
    """Listener writing to our own stdout/stderr, looked up at write time."""

    def write(text: str) -> None:
        stream: TextIO = getattr(sys, stream_name)
        stream.write(text)
        stream.flush()

    return FunctionListener(write)


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and return the exit status instead of exiting."""
    args = _build_parser().parse_args(argv)
    config = get_config()

    shell = Shell(args.program, *args.args, config=config)
    if not args.quiet:
        shell.add_output_listener(_relay("stdout"))
        shell.add_error_listener(_relay("stderr"))

    logger.debug(f"Running: {shell}")
    try:
        process = shell.launch_async(args.directory)
    except ShellLaunchError as e:
        logger.error(str(e))
        return EXIT_LAUNCH_FAILED

    try:
        with shell.get_input() as stdin:
            if args.input is not None:
                stdin.write(args.input)
    except BrokenPipeError:
        logger.debug(f"pid={process.pid} closed its stdin early")

    try:
        returncode = process.wait()
    except KeyboardInterrupt:
        logger.warning("Interrupted, terminating child")
        shell.terminate()
        return EXIT_INTERRUPTED

    if not shell.wait_for_readers(timeout=config.reader_join_timeout):
        logger.warning(f"Output of pid={process.pid} still draining after exit")
    if returncode < 0:
        # Killed by a signal: report it the way POSIX shells do
        return 128 - returncode
    return returncode


def main() -> None:
    """Main entry point."""
    configure_logging(get_config())
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
