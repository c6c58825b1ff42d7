from typing import Any, Callable

from logly import logger
from PySide6.QtCore import QObject, Signal, Slot


class JobWorker(QObject):
    """Runs a blocking toolchain operation in a background Qt thread.

    The worker is meant to be moved to a `QThread` and started via a signal/slot.
    Exactly one of `finished`/`failed` is emitted per run.
    """

    finished = Signal(int, object)  # job_id, result
    failed = Signal(int, str)  # job_id, message

    def __init__(self, job: Callable[[], Any], label: str = "", job_id: int = 0):
        super().__init__()
        self._job = job
        self._label = label
        self._job_id = job_id

    @Slot()
    def run(self):
        """Executes the configured job and emits `finished` or `failed`."""
        try:
            logger.info(f"Starting job id={self._job_id} label={self._label}")
            result = self._job()
            logger.info(f"Job finished id={self._job_id}")
            self.finished.emit(self._job_id, result)
        except Exception as e:
            logger.exception("Job execution failed")
            self.failed.emit(self._job_id, str(e))
