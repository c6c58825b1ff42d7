from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from .versions import ToolchainVersion

if TYPE_CHECKING:
    from .cancellation import CancellationToken
    from .errors import ToolchainManagerError


class ToolchainSource(str, Enum):
    VENDOR = "vendor"
    PUBLIC = "public"
    MANAGED = "managed"


@dataclass(frozen=True, slots=True)
class ToolchainRecord:
    """A toolchain found on disk or reported by swiftly.

    Attributes:
        name: Display name (swiftly version name, bundle or app name).
        version: Parsed version.
        installed: Whether the toolchain is present on this machine.
        in_use: Whether it is the active toolchain.
        is_default: Whether swiftly uses it as the global default.
        source: Where the record came from.
        location: Install path when known.
    """

    name: str
    version: ToolchainVersion
    installed: bool = True
    in_use: bool = False
    is_default: bool = False
    source: ToolchainSource = ToolchainSource.MANAGED
    location: Path | None = None


@dataclass(frozen=True, slots=True)
class ActiveToolchain:
    """The toolchain swiftly resolves for a folder (or globally)."""

    name: str
    location: Path


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One line of swiftly's structured install progress.

    A `step` line carries `text` and `percent`; a `complete` line carries
    `success`. Once the download completes swiftly still verifies and extracts
    the toolchain without further progress.
    """

    text: str = ""
    percent: int | None = None
    complete: bool = False
    success: bool = False


ProgressSink = Callable[[ProgressEvent], None]


@dataclass(frozen=True, slots=True)
class PostInstallPrompt:
    """The single yes/no question asked before running a post-install script."""

    version: str
    summary: str
    message: str


ConfirmCallback = Callable[[PostInstallPrompt, "CancellationToken"], bool]


@dataclass(frozen=True, slots=True)
class InstallRequest:
    version: str
    progress_sink: ProgressSink | None = None
    cancel_token: "CancellationToken | None" = None


class InstallState(str, Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    STREAMING = "streaming"
    EXECUTING = "executing"
    AWAITING_POST_INSTALL_DECISION = "awaiting_post_install_decision"
    EXECUTING_POST_INSTALL = "executing_post_install"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (InstallState.COMPLETED, InstallState.FAILED, InstallState.CANCELLED)


class PostInstallStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    SKIPPED_PLATFORM = "skipped_platform"
    EXECUTED = "executed"
    DECLINED = "declined"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class InstallOutcome:
    """Terminal result of one installation.

    Attributes:
        version: Requested toolchain version.
        state: COMPLETED, FAILED or CANCELLED.
        message: User-facing summary naming the version.
        post_install: What happened to the post-install script.
        error: The typed error for FAILED and CANCELLED outcomes.
    """

    version: str
    state: InstallState
    message: str
    post_install: PostInstallStatus = PostInstallStatus.NOT_REQUIRED
    error: "ToolchainManagerError | None" = field(default=None, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.state == InstallState.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.state == InstallState.CANCELLED
