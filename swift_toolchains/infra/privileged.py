import tempfile
from pathlib import Path
from typing import Final

from logly import logger

from swift_toolchains.core.cancellation import CancellationToken
from swift_toolchains.core.errors import (
    InstallCancelledError,
    PostInstallExecutionError,
    ToolchainManagerError,
)
from swift_toolchains.core.script_validator import PostInstallScript

from .process import ProcessResult, ProcessRunner

_RUN_DIR_PREFIX: Final[str] = "swift-toolchains-post-install-"
_SCRIPT_MODE: Final[int] = 0o700


class PrivilegedExecutor:
    """Runs an already-validated post-install script as root.

    The helper never sees the file swiftly wrote. The validated text is copied
    into a fresh private directory and that copy is executed, so the bytes run
    as root are the bytes that were checked.

    Args:
        runner: Process runner used for the privileged invocation.
        helper: Privilege escalation prefix, e.g. `("pkexec",)`.
    """

    def __init__(self, runner: ProcessRunner, helper: tuple[str, ...] = ("pkexec",)):
        self._runner = runner
        self._helper = tuple(helper)

    def execute(
        self,
        script: PostInstallScript,
        version: str,
        cancel_token: CancellationToken | None = None,
    ) -> ProcessResult:
        """Writes the validated script to a private file and runs it through the helper.

        Raises:
            PostInstallExecutionError: If the script was not accepted, could not
                be written, or exited with a non-zero code. The installed
                toolchain is left in place.
            InstallCancelledError: If cancelled while running.
        """
        if not script.verdict.accepted:
            raise PostInstallExecutionError(version, "script was not validated")

        logger.info(f"Executing post-install script for toolchain {version}")
        with tempfile.TemporaryDirectory(prefix=_RUN_DIR_PREFIX) as run_dir:
            script_path = Path(run_dir) / f"post-install-{version}.sh"
            try:
                script_path.write_text(script.raw_text, encoding="utf-8")
                script_path.chmod(_SCRIPT_MODE)
            except OSError as e:
                raise PostInstallExecutionError(
                    version, f"cannot prepare script for execution: {e}"
                ) from e

            argv = [*self._helper, str(script_path)]
            try:
                result = self._runner.run(argv, cancel_token=cancel_token)
            except InstallCancelledError:
                raise
            except ToolchainManagerError as e:
                logger.error(f"Failed to execute post-install script: {e}")
                raise PostInstallExecutionError(version, str(e)) from e

        for line in result.stdout.splitlines():
            logger.info(f"[post-install {version}] {line}")
        logger.success(f"Post-install script completed successfully for Swift {version}")
        return result
