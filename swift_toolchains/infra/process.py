import os
import subprocess
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from logly import logger

from swift_toolchains.core.cancellation import CancellationToken
from swift_toolchains.core.errors import (
    InstallCancelledError,
    ProcessExitError,
    ProcessSpawnError,
)

_POLL_INTERVAL_SEC: Final[float] = 0.1
_TERMINATE_GRACE_SEC: Final[float] = 5.0


@dataclass(frozen=True, slots=True)
class ProcessResult:
    stdout: str
    stderr: str
    returncode: int


def decode_output(data: bytes) -> str:
    """Decodes process output bytes, replacing undecodable sequences."""
    if not data:
        return ""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("utf-8", errors="replace")


class ProcessRunner:
    """Runs external commands with captured output and cooperative cancellation.

    Every external program (swiftly, mdfind, xcode-select, mkfifo, pkexec) goes
    through a runner so tests can substitute a fake.
    """

    def run(
        self,
        argv: list[str],
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        timeout_sec: float | None = None,
        cancel_token: CancellationToken | None = None,
        check: bool = True,
    ) -> ProcessResult:
        """Runs `argv` to completion.

        Args:
            argv: Program and arguments.
            cwd: Working directory.
            env: Extra environment variables merged over `os.environ`.
            timeout_sec: Kill the process after this many seconds.
            cancel_token: Terminates the process when cancelled.
            check: Raise `ProcessExitError` on a non-zero return code.

        Raises:
            ProcessSpawnError: If the program could not be started.
            ProcessExitError: On timeout, or a non-zero exit when `check` is set.
            InstallCancelledError: If `cancel_token` was cancelled.
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        kwargs: dict = {
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "stdin": subprocess.DEVNULL,
        }
        if cwd is not None:
            kwargs["cwd"] = str(cwd)
        if env:
            kwargs["env"] = {**os.environ, **env}

        logger.info(f"Starting subprocess timeout={timeout_sec}s argv={' '.join(argv)}")
        try:
            proc = subprocess.Popen(argv, **kwargs)
        except OSError as e:
            raise ProcessSpawnError(argv, e.strerror or str(e)) from e

        deadline = None if timeout_sec is None else time.monotonic() + timeout_sec
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL_SEC)
                break
            except subprocess.TimeoutExpired:
                if cancel_token is not None and cancel_token.is_cancelled:
                    logger.warning(f"Cancelling subprocess pid={proc.pid}")
                    self._stop(proc)
                    raise InstallCancelledError()
                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning("Subprocess timed out")
                    self._stop(proc)
                    raise ProcessExitError(argv, 124, "timeout: command exceeded limit")

        result = ProcessResult(
            stdout=decode_output(stdout),
            stderr=decode_output(stderr),
            returncode=proc.returncode,
        )
        logger.info(f"Subprocess finished returncode={result.returncode}")

        if cancel_token is not None and cancel_token.is_cancelled:
            raise InstallCancelledError()
        if check and result.returncode != 0:
            raise ProcessExitError(argv, result.returncode, result.stderr)
        return result

    def make_fifo(self, path: Path) -> None:
        """Creates a named pipe with the `mkfifo` utility."""
        self.run(["mkfifo", str(path)])

    @staticmethod
    def _stop(proc: subprocess.Popen) -> None:
        proc.terminate()
        try:
            proc.communicate(timeout=_TERMINATE_GRACE_SEC)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
