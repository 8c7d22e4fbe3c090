"""shellcast environment-variable configuration.

Environment variables:
    SHELLCAST_CHUNK_SIZE: bytes requested per stream read
        - default 8192, clamped to 1..1048576

    SHELLCAST_ENCODING: codec used to decode stdout/stderr and encode stdin
        - default utf-8; unknown codecs fall back to the default

    SHELLCAST_DECODE_ERRORS: codec error handler for stream decoding
        - strict | replace (default) | ignore | backslashreplace

    SHELLCAST_NEW_SESSION: start the child in its own session / process group
        - true/1/yes = on (terminate() then signals the whole group)
        - false/0/no = off (default)

    SHELLCAST_TERM_TIMEOUT: seconds to wait after SIGTERM before SIGKILL
        - default 2.0, clamped to 0.1..60

    SHELLCAST_KILL_TIMEOUT: seconds to wait after SIGKILL
        - default 1.0, clamped to 0.1..60

    SHELLCAST_READER_JOIN_TIMEOUT: seconds the CLI waits for stream readers
        to drain after the child exits
        - default 5.0, clamped to 0..300

    SHELLCAST_LOG_DEBUG: debug logging
        - true/1/yes = on (DEBUG logs written to a temp file)
        - false/0/no = off (default, INFO logs to stderr)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_CHUNK_SIZE = 8192
MAX_CHUNK_SIZE = 1024 * 1024
DEFAULT_ENCODING = "utf-8"
DEFAULT_DECODE_ERRORS = "replace"
DECODE_ERROR_HANDLERS = frozenset({"strict", "replace", "ignore", "backslashreplace"})
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_READER_JOIN_TIMEOUT = 5.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_chunk_size(value: str | None) -> int:
    if not value:
        return DEFAULT_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_CHUNK_SIZE
    return max(1, min(size, MAX_CHUNK_SIZE))


def _parse_encoding(value: str | None) -> str:
    """Parse the stream encoding, falling back to utf-8 for unknown codecs."""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


def _parse_decode_errors(value: str | None) -> str:
    if not value:
        return DEFAULT_DECODE_ERRORS
    value = value.lower().strip()
    return value if value in DECODE_ERROR_HANDLERS else DEFAULT_DECODE_ERRORS


def _parse_seconds(value: str | None, default: float, low: float, high: float) -> float:
    """Parse a duration in seconds, clamped to [low, high]."""
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return max(low, min(seconds, high))


def _generate_log_file_path() -> str:
    """Build a timestamped debug log path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "shellcast"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"shellcast_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """shellcast configuration.

    Attributes:
        chunk_size: Bytes requested per stream read
        encoding: Codec for stream decoding and stdin encoding
        decode_errors: Codec error handler used when decoding streams
        new_session: Start children in a new session / process group
        term_timeout: Seconds to wait after a graceful termination signal
        kill_timeout: Seconds to wait after a forced kill
        reader_join_timeout: Seconds the CLI waits for readers to drain
        log_debug: Debug logging to a temp file
        log_file: Log file path (set automatically when log_debug is on)
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    encoding: str = DEFAULT_ENCODING
    decode_errors: str = DEFAULT_DECODE_ERRORS
    new_session: bool = False
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    reader_join_timeout: float = DEFAULT_READER_JOIN_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("SHELLCAST_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        chunk_size=_parse_chunk_size(os.environ.get("SHELLCAST_CHUNK_SIZE")),
        encoding=_parse_encoding(os.environ.get("SHELLCAST_ENCODING")),
        decode_errors=_parse_decode_errors(os.environ.get("SHELLCAST_DECODE_ERRORS")),
        new_session=_parse_bool(os.environ.get("SHELLCAST_NEW_SESSION"), default=False),
        term_timeout=_parse_seconds(
            os.environ.get("SHELLCAST_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.1, 60.0
        ),
        kill_timeout=_parse_seconds(
            os.environ.get("SHELLCAST_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.1, 60.0
        ),
        reader_join_timeout=_parse_seconds(
            os.environ.get("SHELLCAST_READER_JOIN_TIMEOUT"),
            DEFAULT_READER_JOIN_TIMEOUT,
            0.0,
            300.0,
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global configuration (loaded lazily)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
