from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable, Final

from logly import logger

from swift_toolchains.core.cancellation import CancellationToken
from swift_toolchains.core.errors import (
    ManagerConfigError,
    ManagerNotInstalledError,
    ManagerParseError,
    MissingToolchainError,
    ProcessExitError,
    ProcessSpawnError,
    ToolchainManagerError,
)
from swift_toolchains.core.manager_parser import (
    in_use_from_config,
    installed_toolchains_from_config,
    load_config,
    parse_in_use_output,
    parse_list_available_output,
    parse_list_output,
    parse_missing_toolchain_error,
)
from swift_toolchains.core.platforms import is_manager_supported
from swift_toolchains.core.settings import ManagerSettings
from swift_toolchains.core.toolchain_types import (
    ActiveToolchain,
    ConfirmCallback,
    InstallOutcome,
    InstallRequest,
    InstallState,
    ProgressSink,
    ToolchainRecord,
    ToolchainSource,
)
from swift_toolchains.core.versions import (
    ManagerVersion,
    SystemVersion,
    ToolchainVersion,
    parse_toolchain_version,
)
from swift_toolchains.infra.process import ProcessResult, ProcessRunner

from .install_pipeline import InstallPipeline, StateCallback

SWIFT_VERSION_FILE: Final[str] = ".swift-version"


def _legacy_version(name: str) -> ToolchainVersion:
    try:
        return parse_toolchain_version(name)
    except ManagerParseError:
        return SystemVersion(name=name)


class ManagerClient:
    """All interaction with the `swiftly` CLI.

    Read operations never raise for manager failures: they log and return an
    empty result. On platforms swiftly does not support, every operation
    returns immediately without spawning a process.

    Args:
        settings: Resolved swiftly locations and commands.
        runner: Process runner used for every CLI call.
        which: Executable lookup, `shutil.which` by default.
    """

    def __init__(
        self,
        settings: ManagerSettings,
        runner: ProcessRunner | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self._settings = settings
        self._runner = runner or ProcessRunner()
        self._which = which

    @property
    def settings(self) -> ManagerSettings:
        return self._settings

    def is_supported(self) -> bool:
        return is_manager_supported(self._settings.platform)

    def is_installed(self) -> bool:
        """Returns True if the swiftly executable can be found."""
        if not self.is_supported():
            return False
        return self._which(self._settings.executable) is not None

    def version(self) -> ManagerVersion | None:
        """Runs `swiftly --version`.

        Returns:
            The parsed version, or None if swiftly is missing or unsupported.
        """
        if not self.is_supported():
            return None
        try:
            result = self._run(["--version"])
            return ManagerVersion.from_string(result.stdout.strip())
        except ToolchainManagerError as e:
            logger.error(f"Failed to retrieve swiftly version: {e}")
            return None

    def supports_json_output(self) -> bool:
        version = self.version()
        return version is not None and version.supports_json_output

    def list(self) -> list[ToolchainRecord]:
        """Lists toolchains installed through swiftly.

        swiftly releases without JSON output are served from `config.json`.
        The order reported by swiftly is kept.
        """
        if not self.is_supported():
            return []
        version = self.version()
        if version is None:
            logger.warning("swiftly is not installed")
            return []
        if not version.supports_json_output:
            return self._list_from_config()

        try:
            result = self._run(["list", "--format=json"])
            return parse_list_output(result.stdout)
        except ToolchainManagerError as e:
            logger.error(f"Failed to retrieve swiftly installations: {e}")
            return []

    def list_available(self, filter: str | None = None) -> list[ToolchainRecord]:
        """Lists toolchains that swiftly can install.

        Args:
            filter: Optional branch or version prefix understood by swiftly
                (e.g. `main-snapshot`, `6.0`).
        """
        if not self.is_supported():
            return []
        version = self.version()
        if version is None:
            logger.warning("swiftly is not installed")
            return []
        if not version.supports_json_output:
            logger.warning("swiftly version does not support JSON output for list-available")
            return []

        args = ["list-available", "--format=json"]
        if filter:
            args.append(filter)
        try:
            result = self._run(args)
            return parse_list_available_output(result.stdout)
        except ToolchainManagerError as e:
            logger.error(f"Failed to retrieve available swiftly toolchains: {e}")
            return []

    def active_toolchain(self, cwd: Path | None = None) -> ActiveToolchain | None:
        """Resolves the toolchain swiftly uses in `cwd` (or globally).

        Raises:
            MissingToolchainError: If the folder pins a version that is not
                installed, so the caller can offer to install it.
        """
        if not self.is_supported():
            return None
        try:
            location_result = self._run(["use", "--print-location"], cwd=cwd)
        except ProcessExitError as e:
            missing = parse_missing_toolchain_error(e.stderr)
            if missing is not None:
                raise MissingToolchainError(missing, e.stderr) from e
            logger.warning(f"Failed to resolve the active swiftly toolchain: {e}")
            return None
        except ToolchainManagerError as e:
            logger.warning(f"Failed to resolve the active swiftly toolchain: {e}")
            return None

        location = Path(location_result.stdout.strip())
        name = self._in_use_name(cwd) or location.name
        return ActiveToolchain(name=name, location=location)

    def use(self, version: str, cwd: Path | None = None) -> bool:
        """Selects `version` for `cwd`, or as the global default.

        With a `cwd`, `.swift-version` is created there first so swiftly pins the
        folder instead of changing the global default.

        Returns:
            False on unsupported platforms, True once swiftly accepted the change.

        Raises:
            ToolchainManagerError: If swiftly rejected the change.
        """
        if not self.is_supported():
            logger.warning(f"Cannot select Swift {version}: swiftly is not supported here")
            return False

        args = ["use", "-y"]
        if cwd is not None:
            (Path(cwd) / SWIFT_VERSION_FILE).touch()
        else:
            args.append("--global-default")
        args.append(version)
        self._run(args, cwd=cwd)
        logger.info(f"Selected Swift {version} ({'folder' if cwd else 'global default'})")
        return True

    def is_managed(self, binary_path: Path | str) -> bool:
        """Returns True if `binary_path` lives under the swiftly home directory."""
        home_dir = self._settings.home_dir
        if not self.is_supported() or home_dir is None:
            return False
        return Path(binary_path).is_relative_to(home_dir)

    def installed_toolchain_paths(self) -> list[Path]:
        """Lists install directories straight from swiftly's `config.json`.

        Raises:
            ManagerConfigError: If the configuration file is missing or invalid.
        """
        if not self.is_supported():
            return []
        config = self._read_config()
        root = self._toolchains_root()
        return [root / name for name in installed_toolchains_from_config(config)]

    def install_toolchain(
        self,
        version: str,
        progress_sink: ProgressSink | None = None,
        cancel_token: CancellationToken | None = None,
        confirm: ConfirmCallback | None = None,
        on_state: StateCallback | None = None,
    ) -> InstallOutcome:
        """Installs `version` through swiftly.

        See `InstallPipeline` for the states an install goes through. Failures
        are reported on the returned outcome rather than raised.
        """
        pipeline = InstallPipeline(
            self._settings,
            self._runner,
            confirm=confirm,
            on_state=on_state,
        )
        outcome = pipeline.run(
            InstallRequest(version=version, progress_sink=progress_sink, cancel_token=cancel_token)
        )
        if outcome.state == InstallState.COMPLETED:
            logger.success(outcome.message)
        return outcome

    def _run(
        self,
        args: list[str],
        cwd: Path | None = None,
        timeout_sec: float | None = None,
    ) -> ProcessResult:
        argv = [self._settings.executable, *args]
        try:
            return self._runner.run(
                argv,
                cwd=cwd,
                env=self._settings.extra_env,
                timeout_sec=timeout_sec or self._settings.list_timeout_sec,
            )
        except ManagerNotInstalledError:
            raise
        except ProcessSpawnError as e:
            raise ManagerNotInstalledError(e.argv, e.reason) from e

    def _toolchains_root(self) -> Path:
        if self._settings.toolchains_root is not None:
            return self._settings.toolchains_root
        if self._settings.home_dir is None:
            raise ManagerConfigError("swiftly home directory is not configured")
        return self._settings.home_dir / "toolchains"

    def _read_config(self) -> dict:
        config_path = self._settings.config_path
        if config_path is None:
            raise ManagerConfigError("swiftly home directory is not configured")
        try:
            text = config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ManagerConfigError(f"cannot read swiftly configuration {config_path}: {e}") from e
        try:
            return load_config(text)
        except ManagerParseError as e:
            raise ManagerConfigError(str(e)) from e

    def _list_from_config(self) -> list[ToolchainRecord]:
        try:
            config = self._read_config()
            root = self._toolchains_root()
        except ManagerConfigError as e:
            logger.warning(f"Failed to read swiftly configuration: {e}")
            return []

        in_use = in_use_from_config(config)
        # Legacy listing has no version metadata; reverse name order is close enough.
        names = sorted(installed_toolchains_from_config(config), reverse=True)
        return [
            ToolchainRecord(
                name=name,
                version=_legacy_version(name),
                in_use=name == in_use,
                source=ToolchainSource.MANAGED,
                location=root / name,
            )
            for name in names
        ]

    def _in_use_name(self, cwd: Path | None) -> str | None:
        if self.supports_json_output():
            try:
                result = self._run(["use", "--format=json"], cwd=cwd)
                return parse_in_use_output(result.stdout)
            except ToolchainManagerError as e:
                logger.warning(f"Failed to read the in-use swiftly toolchain: {e}")
                return None
        try:
            return in_use_from_config(self._read_config())
        except ManagerConfigError as e:
            logger.warning(f"Failed to read swiftly configuration: {e}")
            return None
