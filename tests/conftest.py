"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shellcast.config import Config  # noqa: E402
from shellcast.runtime import Shell  # noqa: E402

# Scriptable child process
CHATTY_CLI = Path(__file__).parent / "fixtures" / "chatty_cli.py"


@pytest.fixture
def chatty_argv() -> list[str]:
    """Command prefix running the chatty child with this interpreter."""
    return [sys.executable, str(CHATTY_CLI)]


@pytest.fixture
def config() -> Config:
    """Default configuration, independent of SHELLCAST_* variables."""
    return Config(term_timeout=2.0, kill_timeout=1.0)


@pytest.fixture
def make_shell(chatty_argv: list[str], config: Config) -> Callable[..., Shell]:
    """Build a Shell running the chatty child with the given steps."""

    def factory(*steps: str, **kwargs) -> Shell:
        kwargs.setdefault("config", config)
        return Shell(*chatty_argv, *steps, **kwargs)

    return factory
