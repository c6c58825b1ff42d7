import errno
import os
import threading
from pathlib import Path
from typing import Final

from logly import logger

from swift_toolchains.core.cancellation import CancellationToken
from swift_toolchains.core.errors import ManagerParseError, ProgressStreamError
from swift_toolchains.core.manager_parser import parse_progress_line
from swift_toolchains.core.toolchain_types import ProgressSink

_JOIN_POLL_SEC: Final[float] = 0.1


class ProgressPipeReader:
    """Reads newline-delimited progress events from a named pipe on a thread.

    The reader opens the pipe before the installer does, so `open()` blocks
    until the installer connects. If the installer exits without ever opening
    the pipe, `release()` connects a throwaway writer so the reader sees EOF.

    Events are delivered in pipe order; none are delivered once the token is
    cancelled.
    """

    def __init__(
        self,
        path: Path,
        sink: ProgressSink,
        cancel_token: CancellationToken | None = None,
    ):
        self._path = Path(path)
        self._sink = sink
        self._cancel_token = cancel_token
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None
        self._delivered = 0

    @property
    def delivered(self) -> int:
        return self._delivered

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"progress-{self._path.name}", daemon=True
        )
        self._thread.start()

    def release(self) -> None:
        """Unblocks a reader still waiting for a writer to open the pipe."""
        try:
            fd = os.open(self._path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as e:
            # ENXIO: no reader is waiting; ENOENT: pipe already removed.
            if e.errno not in (errno.ENXIO, errno.ENOENT):
                logger.warning(f"Failed to release progress pipe {self._path}: {e}")
            return
        os.close(fd)

    def finish(self) -> None:
        """Waits for the reader to finish once no more writers will connect.

        Keeps releasing the pipe until the reader thread exits, which also covers
        a reader that had not reached `open()` yet.

        Raises:
            ProgressStreamError: If pipe I/O or the sink stopped the reader.
        """
        while self._thread is not None and self._thread.is_alive():
            self.release()
            self._thread.join(_JOIN_POLL_SEC)
        if self._error is not None:
            raise ProgressStreamError(f"progress pipe read failed: {self._error}") from self._error

    def _cancelled(self) -> bool:
        return self._cancel_token is not None and self._cancel_token.is_cancelled

    def _run(self) -> None:
        try:
            with open(self._path, "r", encoding="utf-8", errors="replace") as pipe:
                for line in pipe:
                    if self._cancelled():
                        # Keep draining so the installer never blocks on a full pipe.
                        continue
                    try:
                        event = parse_progress_line(line)
                    except ManagerParseError as e:
                        logger.error(f"Failed to parse swiftly progress: {e}")
                        continue
                    if event is None:
                        continue
                    self._sink(event)
                    self._delivered += 1
        except Exception as e:
            logger.exception("Progress pipe read failed")
            self._error = e
