import threading
from typing import Callable, Final, Generic, TypeVar

from .errors import InstallCancelledError

_POLL_INTERVAL_SEC: Final[float] = 0.1

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running job.

    The token is checked at every suspension point (process wait, pipe read,
    user prompt). Callbacks registered with `on_cancel` run once, on the thread
    that calls `cancel()`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Registers `callback` and returns a function that unregisters it.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def wait(self, timeout: float | None = None) -> bool:
        """Blocks until cancelled or `timeout` elapses. Returns True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise InstallCancelledError()

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


class PendingDecision(Generic[T]):
    """A value answered later by another thread (e.g. a user prompt).

    `wait` blocks with no timeout but still observes cancellation.
    """

    def __init__(self) -> None:
        self._answered = threading.Event()
        self._value: T | None = None

    @property
    def is_answered(self) -> bool:
        return self._answered.is_set()

    def answer(self, value: T) -> None:
        if self._answered.is_set():
            return
        self._value = value
        self._answered.set()

    def wait(self, token: CancellationToken | None = None) -> T:
        """Waits for `answer`.

        Raises:
            InstallCancelledError: If `token` is cancelled while waiting.
        """
        while not self._answered.wait(_POLL_INTERVAL_SEC):
            if token is not None:
                token.raise_if_cancelled()
        if token is not None:
            token.raise_if_cancelled()
        return self._value  # type: ignore[return-value]
