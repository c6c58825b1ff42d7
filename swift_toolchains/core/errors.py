"""Exception hierarchy for toolchain management.

Read paths (discovery, listing) catch `ToolchainManagerError` and degrade to an
empty result. Install paths carry the error on an `InstallOutcome` so callers
can render an accurate status.
"""

from typing import Final

CANCELLATION_MESSAGE: Final[str] = "Installation cancelled by user"


class ToolchainManagerError(Exception):
    """Base exception for all toolchain management errors."""


class UnsupportedPlatformError(ToolchainManagerError):
    """Raised when swiftly is not available on the current platform."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"swiftly is not supported on this platform ({platform})")


# ---- Process errors


class ProcessSpawnError(ToolchainManagerError):
    """Raised when a process could not be started at all."""

    def __init__(self, argv: list[str], reason: str):
        self.argv = list(argv)
        self.reason = reason
        super().__init__(f"failed to start {argv[0] if argv else '<empty>'}: {reason}")


class ManagerNotInstalledError(ProcessSpawnError):
    """Raised when the swiftly executable cannot be found."""


class ProcessExitError(ToolchainManagerError):
    """Raised when a process exits with a non-zero return code."""

    def __init__(self, argv: list[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        message = f"{' '.join(argv)} failed (code={returncode})"
        detail = stderr.strip()
        if detail:
            message += f": {detail}"
        super().__init__(message)


# ---- Manager output errors


class ManagerParseError(ToolchainManagerError):
    """Raised when swiftly output cannot be interpreted at all."""


class ManagerConfigError(ToolchainManagerError):
    """Raised when the swiftly configuration file is missing or malformed."""


class MissingToolchainError(ToolchainManagerError):
    """Raised when the folder pins a toolchain version that is not installed."""

    def __init__(self, version: str, stderr: str = ""):
        self.version = version
        self.stderr = stderr
        super().__init__(f"Toolchain {version} is not installed")


# ---- Installation errors


class ProgressStreamError(ToolchainManagerError):
    """Raised when the install progress pipe could not be read to the end."""


class ScriptRejectedError(ToolchainManagerError):
    """Raised when a post-install script fails validation.

    The message never quotes the script. The offending lines are kept on
    `invalid_commands` for logging.
    """

    def __init__(self, version: str, invalid_commands: list[str] | None = None):
        self.version = version
        self.invalid_commands = list(invalid_commands or [])
        super().__init__(
            f"Installation of Swift {version} requires additional system packages, "
            "but the post-install script contains commands that could not be "
            "verified as safe, so it was not run."
        )


class PostInstallExecutionError(ToolchainManagerError):
    """Raised when the privileged post-install run fails."""

    def __init__(self, version: str, detail: str = ""):
        self.version = version
        self.detail = detail
        message = f"Failed to execute post-install script for Swift {version}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class InstallCancelledError(ToolchainManagerError):
    """Raised when the user cancels an installation."""

    def __init__(self, message: str = CANCELLATION_MESSAGE):
        super().__init__(message)


def is_cancellation(error: BaseException) -> bool:
    """Returns True if `error` represents a user-initiated cancellation."""
    return isinstance(error, InstallCancelledError) or CANCELLATION_MESSAGE in str(error)
