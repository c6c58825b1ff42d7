"""End-to-end installation of a toolchain through `swiftly install`.

The pipeline moves through these states:

    IDLE -> SPAWNING -> STREAMING | EXECUTING
         -> AWAITING_POST_INSTALL_DECISION -> EXECUTING_POST_INSTALL
         -> COMPLETED | FAILED | CANCELLED

STREAMING is used when a progress sink is attached: a named pipe is created
and read on a background thread while the installer runs. The post-install
states are only entered on Linux, when swiftly wrote a post-install script.
"""

import tempfile
from pathlib import Path
from typing import Callable, Final

from logly import logger

from swift_toolchains.core.cancellation import CancellationToken
from swift_toolchains.core.errors import (
    CANCELLATION_MESSAGE,
    InstallCancelledError,
    ManagerNotInstalledError,
    PostInstallExecutionError,
    ProcessSpawnError,
    ProgressStreamError,
    ScriptRejectedError,
    ToolchainManagerError,
    UnsupportedPlatformError,
    is_cancellation,
)
from swift_toolchains.core.platforms import (
    PRIVILEGED_POST_INSTALL_PLATFORM,
    is_manager_supported,
)
from swift_toolchains.core.script_validator import (
    DEFAULT_POLICY,
    PostInstallScript,
    ScriptPolicy,
    parse_post_install_script,
)
from swift_toolchains.core.settings import ManagerSettings
from swift_toolchains.core.toolchain_types import (
    ConfirmCallback,
    InstallOutcome,
    InstallRequest,
    InstallState,
    PostInstallPrompt,
    PostInstallStatus,
)
from swift_toolchains.infra.privileged import PrivilegedExecutor
from swift_toolchains.infra.process import ProcessRunner
from swift_toolchains.infra.progress_pipe import ProgressPipeReader

TEMP_DIR_PREFIX: Final[str] = "swift-toolchains-"

StateCallback = Callable[[InstallState], None]


def post_install_file_name(version: str) -> str:
    return f"post-install-{version}.sh"


def progress_pipe_name(version: str) -> str:
    return f"progress-{version}.pipe"


def build_install_args(
    version: str, post_install_file: Path, progress_file: Path | None = None
) -> list[str]:
    """Builds the `swiftly install` arguments (without the executable)."""
    args = [
        "install",
        version,
        "--use",
        "--assume-yes",
        "--post-install-file",
        str(post_install_file),
    ]
    if progress_file is not None:
        args += ["--progress-file", str(progress_file)]
    return args


def build_post_install_prompt(version: str, script: PostInstallScript) -> PostInstallPrompt:
    """Builds the single confirmation shown before running a post-install script."""
    first_lines = "\n".join(script.summary.split("\n")[:2])
    message = (
        f"Swift {version} installation requires additional system packages to be installed. "
        f"This will require administrator privileges.\n\n{first_lines}\n\n"
        "Do you want to proceed with running the post-install script?"
    )
    return PostInstallPrompt(version=version, summary=script.summary, message=message)


class InstallPipeline:
    """Drives one `swiftly install` invocation to a terminal `InstallOutcome`.

    A pipeline instance is meant for a single `run()`. Expected failures
    (unsupported platform, process errors, rejected scripts, cancellation) are
    reported on the outcome; `run()` does not raise them.

    Args:
        settings: swiftly locations and commands.
        runner: Process runner shared with the manager client.
        executor: Runs accepted post-install scripts; defaults to one using
            `settings.privilege_helper`.
        policy: Allow-list used to validate post-install scripts.
        confirm: Asked once before a post-install script runs. Without it the
            script is treated as declined.
        on_state: Called on every state transition.
    """

    def __init__(
        self,
        settings: ManagerSettings,
        runner: ProcessRunner,
        *,
        executor: PrivilegedExecutor | None = None,
        policy: ScriptPolicy = DEFAULT_POLICY,
        confirm: ConfirmCallback | None = None,
        on_state: StateCallback | None = None,
    ):
        self._settings = settings
        self._runner = runner
        self._executor = executor or PrivilegedExecutor(runner, settings.privilege_helper)
        self._policy = policy
        self._confirm = confirm
        self._on_state = on_state
        self._state = InstallState.IDLE

    @property
    def state(self) -> InstallState:
        return self._state

    def run(self, request: InstallRequest) -> InstallOutcome:
        version = request.version
        token = request.cancel_token or CancellationToken()

        if not is_manager_supported(self._settings.platform):
            error = UnsupportedPlatformError(self._settings.platform)
            logger.error(f"Failed to install Swift {version}: {error}")
            return self._finish(
                InstallOutcome(
                    version=version,
                    state=InstallState.FAILED,
                    message=f"Failed to install Swift {version}: {error}",
                    error=error,
                )
            )

        logger.info(f"Installing Swift {version}")
        try:
            with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmp_dir:
                return self._finish(self._install(request, token, Path(tmp_dir)))
        except ToolchainManagerError as e:
            if is_cancellation(e) or token.is_cancelled:
                logger.info(f"Installation of Swift {version} cancelled by user")
                return self._finish(
                    InstallOutcome(
                        version=version,
                        state=InstallState.CANCELLED,
                        message=CANCELLATION_MESSAGE,
                        error=e if isinstance(e, InstallCancelledError) else InstallCancelledError(),
                    )
                )
            logger.error(f"Failed to install Swift {version}: {e}")
            return self._finish(
                InstallOutcome(
                    version=version,
                    state=InstallState.FAILED,
                    message=f"Failed to install Swift {version}: {e}",
                    error=e,
                )
            )

    def _transition(self, state: InstallState) -> None:
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    def _finish(self, outcome: InstallOutcome) -> InstallOutcome:
        self._transition(outcome.state)
        return outcome

    def _install(
        self, request: InstallRequest, token: CancellationToken, tmp_dir: Path
    ) -> InstallOutcome:
        version = request.version
        script_path = tmp_dir / post_install_file_name(version)

        self._transition(InstallState.SPAWNING)
        if request.progress_sink is None:
            self._transition(InstallState.EXECUTING)
            self._run_installer(build_install_args(version, script_path), token)
        else:
            pipe_path = tmp_dir / progress_pipe_name(version)
            self._runner.make_fifo(pipe_path)
            reader = ProgressPipeReader(pipe_path, request.progress_sink, token)
            reader.start()
            self._transition(InstallState.STREAMING)
            try:
                self._run_installer(build_install_args(version, script_path, pipe_path), token)
            except ToolchainManagerError:
                self._stop_reader(reader)
                raise
            reader.finish()

        token.raise_if_cancelled()
        logger.info(f"swiftly finished installing Swift {version}")

        if not script_path.exists():
            logger.info(f"No post-install steps required for toolchain {version}")
            return self._completed(version, PostInstallStatus.NOT_REQUIRED)

        if self._settings.platform != PRIVILEGED_POST_INSTALL_PLATFORM:
            logger.info(f"Skipping post-install script for Swift {version} on {self._settings.platform}")
            return self._completed(version, PostInstallStatus.SKIPPED_PLATFORM)

        logger.info(f"Post-install file found for toolchain {version}")
        return self._post_install(version, script_path, token)

    def _run_installer(self, args: list[str], token: CancellationToken) -> None:
        argv = [self._settings.executable, *args]
        try:
            self._runner.run(
                argv,
                env=self._settings.extra_env,
                timeout_sec=self._settings.install_timeout_sec,
                cancel_token=token,
            )
        except ManagerNotInstalledError:
            raise
        except ProcessSpawnError as e:
            raise ManagerNotInstalledError(e.argv, e.reason) from e

    @staticmethod
    def _stop_reader(reader: ProgressPipeReader) -> None:
        # The installer error is the one reported; the reader already logged its own.
        try:
            reader.finish()
        except ProgressStreamError as e:
            logger.warning(f"Progress reader stopped with an error: {e}")

    def _completed(self, version: str, status: PostInstallStatus) -> InstallOutcome:
        return InstallOutcome(
            version=version,
            state=InstallState.COMPLETED,
            message=f"Swift {version} has been installed successfully",
            post_install=status,
        )

    def _post_install(
        self, version: str, script_path: Path, token: CancellationToken
    ) -> InstallOutcome:
        try:
            raw_text = script_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read post-install script: {e}")
            return self._rejected(ScriptRejectedError(version, ["Unable to read script file"]))

        script = parse_post_install_script(raw_text, self._policy)
        if not script.verdict.accepted:
            logger.error(f"Post-install script rejected: {script.verdict.reason}")
            return self._rejected(ScriptRejectedError(version, script.invalid_commands))

        self._transition(InstallState.AWAITING_POST_INSTALL_DECISION)
        prompt = build_post_install_prompt(version, script)
        logger.warning(
            f"User confirmation required to execute post-install script for Swift {version}"
        )
        accepted = self._confirm(prompt, token) if self._confirm is not None else False
        token.raise_if_cancelled()

        if not accepted:
            logger.warning(f"Swift {version} post-install script execution declined by user")
            return InstallOutcome(
                version=version,
                state=InstallState.COMPLETED,
                message=(
                    f"Swift {version} installation is incomplete. "
                    "You may need to manually install additional system packages."
                ),
                post_install=PostInstallStatus.DECLINED,
            )

        self._transition(InstallState.EXECUTING_POST_INSTALL)
        try:
            self._executor.execute(script, version, token)
        except PostInstallExecutionError as e:
            return InstallOutcome(
                version=version,
                state=InstallState.FAILED,
                message=str(e),
                post_install=PostInstallStatus.FAILED,
                error=e,
            )
        return self._completed(version, PostInstallStatus.EXECUTED)

    @staticmethod
    def _rejected(error: ScriptRejectedError) -> InstallOutcome:
        for command in error.invalid_commands:
            logger.error(f"Unverified post-install command: {command}")
        return InstallOutcome(
            version=error.version,
            state=InstallState.FAILED,
            message=str(error),
            post_install=PostInstallStatus.REJECTED,
            error=error,
        )
