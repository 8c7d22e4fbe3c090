"""Shell supervisor tests.

Test coverage:
- Command building and rendering
- Launch failures and precondition errors
- Output/error capture and listener dispatch
- Listeners added after launch
- Writing to the child's stdin
- Working directory and environment
- Stream read failures
- Termination and the async run() API
"""

from __future__ import annotations

import errno
import logging
import os
import signal
import threading
import time
from types import SimpleNamespace

import anyio
import pytest

from shellcast.config import Config
from shellcast.errors import ShellLaunchError, ShellNotStartedError
from shellcast.listeners import ListenerSlot
from shellcast.runtime import INTERRUPTED_EXIT_CODE, Shell
from shellcast.runtime.termination import IS_WINDOWS

READER_TIMEOUT = 10.0


class Chunks:
    """Thread-safe listener recording every chunk it receives."""

    def __init__(self) -> None:
        self.items: list[str] = []
        self.lock = threading.Lock()

    def receive(self, text: str) -> None:
        with self.lock:
            self.items.append(text)

    @property
    def text(self) -> str:
        with self.lock:
            return "".join(self.items)


def wait_until(predicate, timeout: float = READER_TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def run_to_end(shell: Shell, directory=None) -> int:
    code = shell.launch(directory)
    assert shell.wait_for_readers(timeout=READER_TIMEOUT)
    return code


# =============================================================================
# Command
# =============================================================================


class TestCommand:
    """Test command building."""

    def test_str_joins_tokens(self, config: Config):
        shell = Shell("ls", "-l", config=config)
        shell.add_param("a", "b")
        shell.add_params(["c d"])
        assert str(shell) == "ls -l a b c d"
        assert shell.command == ("ls", "-l", "a", "b", "c d")

    def test_executable_only(self, config: Config):
        assert str(Shell("true", config=config)) == "true"

    def test_repr_before_launch(self, config: Config):
        assert repr(Shell("true", config=config)) == "Shell(command=['true'], pid=None)"


# =============================================================================
# Preconditions and launch failures
# =============================================================================


class TestPreconditions:
    """Test operations that need a launched process."""

    def test_get_input_before_launch(self, config: Config):
        shell = Shell("true", config=config)
        with pytest.raises(ShellNotStartedError) as exc_info:
            shell.get_input()
        assert isinstance(exc_info.value, RuntimeError)
        assert not isinstance(exc_info.value, OSError)

    def test_terminate_before_launch(self, config: Config):
        with pytest.raises(ShellNotStartedError):
            Shell("true", config=config).terminate()

    def test_wait_for_readers_before_launch(self, config: Config):
        with pytest.raises(ShellNotStartedError):
            Shell("true", config=config).wait_for_readers()

    def test_nothing_captured_before_launch(self, config: Config):
        shell = Shell("true", config=config)
        assert shell.process is None
        assert not shell.is_running()
        assert shell.get_output() == ""
        assert not shell.has_output()
        assert not shell.has_error()

    def test_rejects_non_listener(self, config: Config):
        shell = Shell("true", config=config)
        with pytest.raises(TypeError, match="FunctionListener"):
            shell.add_output_listener(print)

    def test_nonexistent_executable(self, config: Config, tmp_path):
        missing = str(tmp_path / "no-such-program")
        shell = Shell(missing, "arg", config=config)

        with pytest.raises(ShellLaunchError) as exc_info:
            shell.launch()

        error = exc_info.value
        assert isinstance(error, OSError)
        assert error.command == (missing, "arg")
        assert isinstance(error.__cause__, OSError)
        assert shell.process is None
        with pytest.raises(ShellNotStartedError):
            shell.get_input()

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific errno")
    def test_launch_error_keeps_errno(self, config: Config, tmp_path):
        shell = Shell(str(tmp_path / "no-such-program"), config=config)
        with pytest.raises(ShellLaunchError) as exc_info:
            shell.launch_async()
        assert exc_info.value.errno == errno.ENOENT

    def test_missing_directory(self, make_shell, tmp_path):
        shell = make_shell("out:hello")
        with pytest.raises(ShellLaunchError) as exc_info:
            shell.launch(tmp_path / "missing")
        assert exc_info.value.directory == tmp_path / "missing"

    @pytest.mark.parametrize(
        "overrides",
        [{"encoding": "no-such-codec"}, {"decode_errors": "no-such-handler"}],
    )
    def test_bad_codec_settings_spawn_nothing(self, make_shell, overrides):
        shell = make_shell("sleep:30", config=Config(**overrides))

        with pytest.raises(ValueError, match="no-such"):
            shell.launch_async()

        assert shell.process is None
        assert not shell.is_running()
        with pytest.raises(ShellNotStartedError):
            shell.terminate()


# =============================================================================
# Capture and dispatch
# =============================================================================


class TestCapture:
    """Test built-in capture buffers and listener dispatch."""

    def test_hello(self, make_shell):
        shell = make_shell("out:hello")

        assert run_to_end(shell) == 0
        assert shell.get_output() == "hello"
        assert shell.has_output()
        assert not shell.has_error()
        assert shell.get_error() == ""

    def test_stderr_and_exit_code(self, make_shell):
        shell = make_shell("err:oops", "exit:3")

        assert run_to_end(shell) == 3
        assert shell.get_error() == "oops"
        assert shell.has_error()
        assert not shell.has_output()

    def test_both_streams(self, make_shell):
        shell = make_shell("out:one", "err:two", "out:three")

        run_to_end(shell)

        assert shell.get_output() == "onethree"
        assert shell.get_error() == "two"

    def test_order_within_stream(self, make_shell):
        steps = [f"out:{i}," for i in range(50)]
        shell = make_shell(*steps)

        run_to_end(shell)

        assert shell.get_output() == "".join(f"{i}," for i in range(50))

    def test_listeners_receive_their_stream(self, make_shell):
        out, err = Chunks(), Chunks()
        shell = make_shell("out:hello ", "err:warning", "out:world")
        assert shell.add_output_listener(out) is out
        shell.add_error_listener(err)

        run_to_end(shell)

        assert out.text == "hello world"
        assert err.text == "warning"

    def test_removed_listener_receives_nothing(self, make_shell):
        kept, removed = Chunks(), Chunks()
        shell = make_shell("out:data", "err:data")
        shell.add_output_listener(removed)
        shell.add_output_listener(kept)
        shell.add_error_listener(removed)
        shell.remove_output_listener(removed)
        shell.remove_error_listener(removed)

        run_to_end(shell)

        assert kept.text == "data"
        assert removed.items == []
        assert shell.get_error() == "data"

    def test_listener_added_after_launch(self, make_shell):
        late = Chunks()
        shell = make_shell("out:first", "readline", "out:second")

        process = shell.launch_async()
        assert wait_until(lambda: shell.get_output() == "first")

        shell.add_output_listener(late)
        with shell.get_input() as stdin:
            stdin.write("go\n")

        assert process.wait(timeout=READER_TIMEOUT) == 0
        assert shell.wait_for_readers(timeout=READER_TIMEOUT)
        assert late.text == "second"
        assert shell.get_output() == "firstsecond"

    def test_multibyte_split_across_reads(self, make_shell):
        small_reads = Config(chunk_size=1)
        euro = "€".encode("utf-8").hex()
        shell = make_shell(f"bytes:{euro}", config=small_reads)
        chunks = shell.add_output_listener(Chunks())

        run_to_end(shell)

        assert shell.get_output() == "€"
        assert chunks.items == ["€"]

    def test_invalid_bytes_replaced(self, make_shell):
        shell = make_shell("bytes:ff")

        run_to_end(shell)

        assert shell.get_output() == "\ufffd"


# =============================================================================
# Process input, directory, environment
# =============================================================================


class TestProcessIO:
    """Test stdin writing and launch options."""

    def test_input_is_echoed(self, make_shell):
        shell = make_shell("echo")

        process = shell.launch_async()
        with shell.get_input() as stdin:
            stdin.write("ping\n")
            stdin.write("pong\n")

        assert process.wait(timeout=READER_TIMEOUT) == 0
        assert shell.wait_for_readers(timeout=READER_TIMEOUT)
        lines = shell.get_output().splitlines()
        assert lines == ["ping", "pong"]

    def test_working_directory(self, make_shell, tmp_path):
        shell = make_shell("cwd")

        run_to_end(shell, tmp_path)

        assert os.path.realpath(shell.get_output()) == os.path.realpath(tmp_path)

    def test_environment(self, make_shell):
        env = {**os.environ, "SHELLCAST_MARKER": "42"}
        shell = make_shell("env:SHELLCAST_MARKER", env=env)

        run_to_end(shell)

        assert shell.get_output() == "42"

    def test_repr_after_launch(self, make_shell):
        shell = make_shell()
        process = shell.launch_async()
        process.wait(timeout=READER_TIMEOUT)
        assert f"pid={process.pid}" in repr(shell)
        assert shell.process is process

    def test_readers_are_named_daemon_threads(self, make_shell):
        shell = make_shell("out:hello")
        process = shell.launch_async()
        readers = shell._readers

        assert len(readers) == 2
        assert all(reader.daemon for reader in readers)
        assert sorted(reader.name for reader in readers) == [
            f"shellcast-stderr-{process.pid}",
            f"shellcast-stdout-{process.pid}",
        ]

        assert process.wait(timeout=READER_TIMEOUT) == 0
        assert shell.wait_for_readers(timeout=READER_TIMEOUT)


# =============================================================================
# Stream read failures
# =============================================================================


class FailingStream:
    """Pipe stand-in yielding some chunks, then failing."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = list(chunks)
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.closed = True

    def read1(self, size: int) -> bytes:
        if self.chunks:
            return self.chunks.pop(0)
        raise BrokenPipeError(errno.EPIPE, "Broken pipe")


class TestStreamErrors:
    """Test reader behaviour on I/O failures."""

    def read(self, shell: Shell, stream, slot: ListenerSlot | None = None) -> ListenerSlot:
        slot = slot or ListenerSlot()
        shell._read_stream(SimpleNamespace(pid=4242), stream, slot, "stdout")
        return slot

    def test_failure_reported_to_callback(self, config: Config, caplog):
        reported: list[tuple[str, OSError]] = []
        shell = Shell("true", config=config, on_stream_error=lambda *args: reported.append(args))
        chunks = Chunks()
        slot = ListenerSlot()
        slot.add(chunks)
        stream = FailingStream([b"partial"])

        with caplog.at_level(logging.WARNING, logger="shellcast"):
            self.read(shell, stream, slot)

        assert chunks.text == "partial"
        assert stream.closed
        assert len(reported) == 1
        name, error = reported[0]
        assert name == "stdout"
        assert isinstance(error, BrokenPipeError)
        assert "Error reading stdout of pid=4242" in caplog.text

    def test_failure_without_callback_is_silent(self, config: Config):
        shell = Shell("true", config=config)
        self.read(shell, FailingStream([]))

    def test_callback_errors_are_swallowed(self, config: Config, caplog):
        def explode(name: str, error: OSError) -> None:
            raise ValueError("callback broke")

        shell = Shell("true", config=config, on_stream_error=explode)
        with caplog.at_level(logging.WARNING, logger="shellcast"):
            self.read(shell, FailingStream([]))
        assert "callback broke" in caplog.text

    def test_listener_error_stops_reader(self, config: Config, caplog):
        class Boom:
            def receive(self, text: str) -> None:
                raise RuntimeError("listener broke")

        shell = Shell("true", config=config)
        slot = ListenerSlot()
        slot.add(Boom())
        stream = FailingStream([b"a", b"b"])

        with caplog.at_level(logging.ERROR, logger="shellcast"):
            self.read(shell, stream, slot)

        assert stream.chunks == [b"b"]
        assert "listener broke" in caplog.text


# =============================================================================
# Waiting and termination
# =============================================================================


class TestTermination:
    """Test blocking launch, termination and interrupted waits."""

    def test_interrupted_wait_returns_sentinel(self, config: Config, monkeypatch):
        class InterruptedProcess:
            pid = 4242

            def wait(self):
                raise KeyboardInterrupt

        shell = Shell("true", config=config)
        monkeypatch.setattr(shell, "launch_async", lambda directory=None: InterruptedProcess())

        assert shell.launch() == INTERRUPTED_EXIT_CODE == -1

    def test_terminate_long_running(self, make_shell):
        shell = make_shell("out:started", "sleep:30")
        shell.launch_async()
        assert wait_until(shell.has_output)
        assert shell.is_running()

        returncode = shell.terminate(term_timeout=5.0)

        assert returncode is not None
        assert not shell.is_running()
        if not IS_WINDOWS:
            assert returncode == -signal.SIGTERM
        assert shell.wait_for_readers(timeout=READER_TIMEOUT)

    def test_terminate_finished_process(self, make_shell):
        shell = make_shell("exit:7")
        shell.launch_async().wait(timeout=READER_TIMEOUT)
        assert shell.terminate() == 7

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    def test_new_session(self, make_shell):
        shell = make_shell("sleep:30", config=Config(new_session=True))
        process = shell.launch_async()

        assert os.getpgid(process.pid) == process.pid
        assert os.getpgid(process.pid) != os.getpgid(os.getpid())
        assert shell.terminate(term_timeout=5.0) == -signal.SIGTERM


# =============================================================================
# Async run()
# =============================================================================


class TestRun:
    """Test the awaitable launch."""

    @pytest.mark.asyncio
    async def test_run_returns_exit_code(self, make_shell):
        shell = make_shell("out:async", "exit:5")

        assert await shell.run() == 5
        assert shell.wait_for_readers(timeout=READER_TIMEOUT)
        assert shell.get_output() == "async"

    @pytest.mark.asyncio
    async def test_run_launch_failure(self, config: Config, tmp_path):
        shell = Shell(str(tmp_path / "no-such-program"), config=config)
        with pytest.raises(ShellLaunchError):
            await shell.run()

    @pytest.mark.asyncio
    async def test_cancel_terminates_process(self, make_shell):
        shell = make_shell("sleep:30")

        with anyio.move_on_after(0.5) as scope:
            await shell.run()

        assert scope.cancelled_caught
        assert shell.process is not None
        assert shell.process.returncode is not None
        assert not shell.is_running()
