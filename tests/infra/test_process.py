import sys
import threading
import time

import pytest

from swift_toolchains.core.cancellation import CancellationToken
from swift_toolchains.core.errors import (
    InstallCancelledError,
    ProcessExitError,
    ProcessSpawnError,
)
from swift_toolchains.infra import process
from swift_toolchains.infra.process import ProcessRunner, decode_output


class _DummyPopen:
    calls: list[tuple[list[str], dict]] = []

    def __init__(self, argv: list[str], **kwargs: object) -> None:
        _DummyPopen.calls.append((argv, kwargs))
        self.pid = 4242
        self.returncode: int | None = None

    def communicate(self, timeout: float | None = None) -> tuple[bytes, bytes]:
        self.returncode = 0
        return b"out", b""


@pytest.fixture
def dummy_popen(monkeypatch) -> type[_DummyPopen]:
    _DummyPopen.calls = []
    monkeypatch.setattr(process.subprocess, "Popen", _DummyPopen)
    return _DummyPopen


def test_decode_output_replaces_invalid_bytes() -> None:
    assert decode_output(b"") == ""
    assert decode_output("héllo".encode("utf-8")) == "héllo"
    assert decode_output(b"bad\xff") == "bad�"


def test_run_passes_pipes_and_merged_env(dummy_popen) -> None:
    result = ProcessRunner().run(["swiftly", "--version"], env={"SWIFTLY_HOME_DIR": "/h"})

    assert result.stdout == "out"
    argv, kwargs = dummy_popen.calls[0]
    assert argv == ["swiftly", "--version"]
    assert kwargs["stdout"] is process.subprocess.PIPE
    assert kwargs["stdin"] is process.subprocess.DEVNULL
    assert kwargs["env"]["SWIFTLY_HOME_DIR"] == "/h"


def test_run_inherits_environment_without_overrides(dummy_popen) -> None:
    ProcessRunner().run(["swiftly"])

    _, kwargs = dummy_popen.calls[0]
    assert "env" not in kwargs
    assert "creationflags" not in kwargs


def test_make_fifo_invokes_mkfifo(dummy_popen, tmp_path) -> None:
    ProcessRunner().make_fifo(tmp_path / "progress.pipe")

    assert dummy_popen.calls[0][0] == ["mkfifo", str(tmp_path / "progress.pipe")]


def test_run_captures_real_output() -> None:
    result = ProcessRunner().run([sys.executable, "-c", "print('hello')"])

    assert result.stdout.strip() == "hello"
    assert result.returncode == 0


def test_run_raises_exit_error_with_stderr() -> None:
    argv = [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]

    with pytest.raises(ProcessExitError) as excinfo:
        ProcessRunner().run(argv)

    assert excinfo.value.returncode == 3
    assert excinfo.value.stderr == "boom"
    assert "boom" in str(excinfo.value)


def test_run_without_check_returns_failed_result() -> None:
    argv = [sys.executable, "-c", "import sys; sys.exit(2)"]

    assert ProcessRunner().run(argv, check=False).returncode == 2


def test_run_reports_missing_program() -> None:
    with pytest.raises(ProcessSpawnError):
        ProcessRunner().run(["definitely-not-a-real-program-xyz"])


def test_run_times_out() -> None:
    argv = [sys.executable, "-c", "import time; time.sleep(30)"]

    with pytest.raises(ProcessExitError) as excinfo:
        ProcessRunner().run(argv, timeout_sec=0.3)

    assert excinfo.value.returncode == 124


def test_run_terminates_process_on_cancel() -> None:
    token = CancellationToken()
    argv = [sys.executable, "-c", "import time; time.sleep(30)"]
    threading.Timer(0.3, token.cancel).start()

    started = time.monotonic()
    with pytest.raises(InstallCancelledError):
        ProcessRunner().run(argv, cancel_token=token)

    assert time.monotonic() - started < 10


def test_run_refuses_to_start_when_already_cancelled(dummy_popen) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(InstallCancelledError):
        ProcessRunner().run(["swiftly"], cancel_token=token)

    assert dummy_popen.calls == []
