from pathlib import Path
from typing import Any, Callable, Final

from logly import logger
from PySide6.QtCore import QObject, QThread, Signal

from swift_toolchains.core.mismatch import (
    DOCUMENTATION_URL,
    WARNING_MESSAGE,
    MismatchContext,
    MismatchVerdict,
    MismatchWarningRegistry,
    ToolchainAuthority,
    detect_toolchain_mismatch,
)
from swift_toolchains.core.toolchain_types import (
    InstallOutcome,
    PostInstallPrompt,
    PostInstallStatus,
)
from swift_toolchains.infra.qt_jobs import JobWorker

from .discovery import ToolchainDiscovery
from .manager_client import ManagerClient
from .sessions import InstallSession, InstallSessionRegistry

_FAILED_RETURNCODE: Final[int] = 1
_CANCELLED_RETURNCODE: Final[int] = 130


class ToolchainController(QObject):
    """Orchestrates toolchain operations and exposes results via Qt signals."""

    log = Signal(str)
    error = Signal(str)
    busy_changed = Signal(bool)
    job_started = Signal(str)
    job_finished = Signal(str, int)  # label, returncode
    toolchains_loaded = Signal(object)  # list[ToolchainRecord]
    available_loaded = Signal(object)  # list[ToolchainRecord]
    install_progress = Signal(int, object)  # session id, ProgressEvent
    install_finished = Signal(object)  # InstallOutcome
    post_install_confirmation_requested = Signal(int, str, str)  # session id, version, message
    mismatch_detected = Signal(str, object)  # folder, MismatchVerdict

    def __init__(
        self,
        client: ManagerClient,
        discovery: ToolchainDiscovery | None = None,
        sessions: InstallSessionRegistry | None = None,
        parent: QObject | None = None,
    ):
        """Initializes the controller.

        Args:
            client: swiftly client used for listing, selection and installs.
            discovery: Toolchain discovery; built from `client` when omitted.
            sessions: Registry of in-flight installs.
            parent: Optional Qt parent object.
        """
        super().__init__(parent)
        self._client = client
        self._discovery = discovery or ToolchainDiscovery(client.settings, client=client)
        self._sessions = sessions or InstallSessionRegistry()
        self._mismatch_warnings = MismatchWarningRegistry()
        self._thread: QThread | None = None
        self._worker: JobWorker | None = None
        self._active_job_id = 0
        self._active_label = ""
        self._active_session: InstallSession | None = None
        self._refresh_after_finish = False
        self._active_path: Path | None = None

    def is_busy(self) -> bool:
        return self._thread is not None

    def refresh_toolchains(self, active_path: Path | None = None) -> None:
        """Discovers installed toolchains in the background."""
        if active_path is not None:
            self._active_path = active_path
        current = self._active_path
        self._start_job(
            label="discover toolchains",
            job=lambda: self._discovery.discover(current),
            on_finished=self._on_toolchains_finished,
            announce=False,
        )

    def load_available(self, filter: str | None = None) -> None:
        """Loads installable toolchains via `swiftly list-available`."""
        label = "swiftly list-available" + (f" {filter}" if filter else "")
        self._start_job(
            label=label,
            job=lambda: self._client.list_available(filter),
            on_finished=self._on_available_finished,
        )

    def select_toolchain(self, version: str, folder: Path | None = None) -> None:
        """Selects a toolchain for `folder`, or as the global default."""
        self._start_job(
            label=f"swiftly use {version}",
            job=lambda: self._client.use(version, folder),
            on_finished=self._on_select_finished,
        )

    def install_toolchain(self, version: str) -> int | None:
        """Installs a toolchain via `swiftly install` in the background.

        Returns:
            The install session id, or None if another job is running.
        """
        if self._thread is not None:
            self.log.emit("[info] already running")
            return None

        session = self._sessions.open(version, on_prompt=self._on_post_install_prompt)
        self._active_session = session
        self._start_job(
            label=f"swiftly install {version}",
            job=lambda: self._client.install_toolchain(
                version,
                progress_sink=lambda event, sid=session.job_id: self.install_progress.emit(
                    sid, event
                ),
                cancel_token=session.token,
                confirm=session.confirm,
            ),
            on_finished=self._on_install_finished,
        )
        return session.job_id

    def cancel_install(self, session_id: int | None = None) -> bool:
        """Cancels one install session, or every open session when no id is given."""
        if session_id is None:
            self._sessions.cancel_all()
            return bool(self._sessions.active())
        return self._sessions.cancel(session_id)

    def answer_post_install(self, session_id: int, accepted: bool) -> bool:
        """Answers a pending `post_install_confirmation_requested` prompt."""
        return self._sessions.answer(session_id, accepted)

    def diagnose_build_output(
        self,
        output: str,
        folder: str,
        platform: str | None = None,
        authority: ToolchainAuthority = ToolchainAuthority.UNKNOWN,
    ) -> MismatchVerdict:
        """Checks build output for a swiftly/Xcode mismatch.

        `mismatch_detected` is emitted at most once per folder.
        """
        context = MismatchContext(
            platform=platform or self._client.settings.platform, authority=authority
        )
        verdict = detect_toolchain_mismatch(output, context)
        if verdict.detected and self._mismatch_warnings.should_warn(folder):
            logger.warning(f"Toolchain mismatch detected in {folder}")
            self.log.emit(f"WARN  {WARNING_MESSAGE} See {DOCUMENTATION_URL}")
            self.mismatch_detected.emit(folder, verdict)
        return verdict

    def _on_thread_finished(self, finished_thread: QThread) -> None:
        """Clears references only if the finished thread is still the active one.

        Args:
            finished_thread: The thread that has emitted `finished`.
        """
        if self._thread is finished_thread:
            self._thread = None
            self._worker = None
            if self._refresh_after_finish:
                self._refresh_after_finish = False
                # Chain refresh without dropping the busy state in-between.
                self.refresh_toolchains()
                return
            self.busy_changed.emit(False)

    def _start_job(
        self,
        label: str,
        job: Callable[[], Any],
        on_finished: Callable[[int, Any], None],
        announce: bool = True,
    ) -> None:
        if self._thread is not None:
            self.log.emit("[info] already running")
            return

        self._active_job_id += 1
        job_id = self._active_job_id
        self._active_label = label
        self._refresh_after_finish = False

        if announce:
            self.log.emit(f"$ {label}")
            self.log.emit("[running] ...")

        self.job_started.emit(label)
        self.busy_changed.emit(True)

        thread = QThread()
        worker = JobWorker(job=job, label=label, job_id=job_id)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)

        worker.finished.connect(on_finished)
        worker.failed.connect(self._on_job_failed)
        worker.finished.connect(thread.quit)
        worker.failed.connect(thread.quit)
        worker.finished.connect(worker.deleteLater)
        worker.failed.connect(worker.deleteLater)
        thread.finished.connect(thread.deleteLater)
        thread.finished.connect(lambda t=thread: self._on_thread_finished(t))

        self._thread = thread
        self._worker = worker
        thread.start()

    def _on_post_install_prompt(self, session: InstallSession, prompt: PostInstallPrompt) -> None:
        self.log.emit(f"WARN  {prompt.message}")
        self.post_install_confirmation_requested.emit(session.job_id, prompt.version, prompt.message)

    def _on_job_failed(self, job_id: int, message: str) -> None:
        if job_id != self._active_job_id:
            return
        self._close_active_session()
        self.error.emit(f"[error] {message}")
        self.job_finished.emit(self._active_label, _FAILED_RETURNCODE)

    def _on_toolchains_finished(self, job_id: int, records: Any) -> None:
        if job_id != self._active_job_id:
            return
        self.toolchains_loaded.emit(records)
        self.log.emit(f"[loaded] {len(records)} toolchains")
        self.job_finished.emit(self._active_label, 0)

    def _on_available_finished(self, job_id: int, records: Any) -> None:
        if job_id != self._active_job_id:
            return
        self.available_loaded.emit(records)
        if not records:
            self.log.emit("WARN  No installable toolchains found.")
        self.job_finished.emit(self._active_label, 0)

    def _on_select_finished(self, job_id: int, selected: Any) -> None:
        if job_id != self._active_job_id:
            return
        if not selected:
            self.error.emit("[error] swiftly is not supported on this platform")
            self.job_finished.emit(self._active_label, _FAILED_RETURNCODE)
            return
        self._refresh_after_finish = True
        self.job_finished.emit(self._active_label, 0)

    def _on_install_finished(self, job_id: int, outcome: InstallOutcome) -> None:
        if job_id != self._active_job_id:
            return
        self._close_active_session()
        self.install_finished.emit(outcome)

        if outcome.cancelled:
            # User-initiated; no error UI.
            self.log.emit(f"[cancelled] {outcome.message}")
            self.job_finished.emit(self._active_label, _CANCELLED_RETURNCODE)
            return
        if not outcome.succeeded:
            self.error.emit(f"[error] {outcome.message}")
            self.job_finished.emit(self._active_label, _FAILED_RETURNCODE)
            return

        if outcome.post_install == PostInstallStatus.DECLINED:
            self.log.emit(f"WARN  {outcome.message}")
        else:
            self.log.emit(outcome.message)
        self._refresh_after_finish = True
        self.job_finished.emit(self._active_label, 0)

    def _close_active_session(self) -> None:
        if self._active_session is not None:
            self._sessions.close(self._active_session.job_id)
            self._active_session = None
