import threading
from dataclasses import dataclass, field
from typing import Callable

from logly import logger

from swift_toolchains.core.cancellation import CancellationToken, PendingDecision
from swift_toolchains.core.toolchain_types import PostInstallPrompt

PromptNotifier = Callable[["InstallSession", PostInstallPrompt], None]


@dataclass
class InstallSession:
    """State owned by one in-flight installation.

    `confirm` matches `ConfirmCallback`: it publishes the prompt through
    `on_prompt` and blocks the install thread until `answer()` is called or
    the token is cancelled.
    """

    job_id: int
    version: str
    token: CancellationToken = field(default_factory=CancellationToken)
    decision: PendingDecision[bool] = field(default_factory=PendingDecision)
    prompt: PostInstallPrompt | None = None
    on_prompt: PromptNotifier | None = None

    def confirm(self, prompt: PostInstallPrompt, token: CancellationToken) -> bool:
        self.prompt = prompt
        if self.on_prompt is not None:
            self.on_prompt(self, prompt)
        return self.decision.wait(token)

    def answer(self, accepted: bool) -> None:
        self.decision.answer(accepted)

    def cancel(self) -> None:
        self.token.cancel()


class InstallSessionRegistry:
    """Tracks install sessions by job id so a frontend can cancel or answer them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[int, InstallSession] = {}
        self._next_id = 0

    def open(self, version: str, on_prompt: PromptNotifier | None = None) -> InstallSession:
        with self._lock:
            self._next_id += 1
            session = InstallSession(job_id=self._next_id, version=version, on_prompt=on_prompt)
            self._sessions[session.job_id] = session
        logger.info(f"Opened install session id={session.job_id} version={version}")
        return session

    def get(self, job_id: int) -> InstallSession | None:
        with self._lock:
            return self._sessions.get(job_id)

    def active(self) -> list[InstallSession]:
        with self._lock:
            return list(self._sessions.values())

    def cancel(self, job_id: int) -> bool:
        """Cancels a session. Returns False if no such session is open."""
        session = self.get(job_id)
        if session is None:
            return False
        logger.info(f"Cancelling install session id={job_id} version={session.version}")
        session.cancel()
        return True

    def answer(self, job_id: int, accepted: bool) -> bool:
        session = self.get(job_id)
        if session is None:
            return False
        session.answer(accepted)
        return True

    def close(self, job_id: int) -> None:
        with self._lock:
            self._sessions.pop(job_id, None)

    def cancel_all(self) -> None:
        for session in self.active():
            session.cancel()
