from dataclasses import replace
from pathlib import Path
from typing import Final

from logly import logger

from swift_toolchains.core.errors import ToolchainManagerError
from swift_toolchains.core.platforms import DARWIN
from swift_toolchains.core.settings import ManagerSettings
from swift_toolchains.core.toolchain_types import ToolchainRecord, ToolchainSource
from swift_toolchains.core.versions import (
    LATEST_ALIAS_NAME,
    SystemVersion,
    version_from_identifier,
    version_sort_key,
)
from swift_toolchains.infra.process import ProcessRunner

from .manager_client import ManagerClient

TOOLCHAIN_PREFIX: Final[str] = "swift-"
SWIFT_BINARY: Final[Path] = Path("usr") / "bin" / "swift"


def xcode_app_directory(developer_dir: str | Path) -> Path | None:
    """Maps a developer directory (`.../Xcode.app/Contents/Developer`) to its `.app`."""
    path = Path(developer_dir)
    for candidate in (path, *path.parents):
        if candidate.suffix == ".app":
            return candidate
    return None


def find_toolchains_in(directory: Path) -> list[Path]:
    """Returns every `swift-*` entry of `directory` that contains a swift binary.

    A missing or unreadable directory yields an empty list.
    """
    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return []
    return [
        entry
        for entry in entries
        if entry.name.startswith(TOOLCHAIN_PREFIX) and (entry / SWIFT_BINARY).exists()
    ]


def _is_latest_alias(record: ToolchainRecord) -> bool:
    return record.name.removesuffix(".xctoolchain") == LATEST_ALIAS_NAME


def sort_public_or_managed(records: list[ToolchainRecord]) -> list[ToolchainRecord]:
    """Sorts latest first, keeping the `swift-latest` alias at the top."""
    return sorted(records, key=lambda r: (not _is_latest_alias(r), version_sort_key(r.version)))


def _contains(location: Path | None, active_path: Path) -> bool:
    return location is not None and active_path.is_relative_to(location)


class ToolchainDiscovery:
    """Enumerates Xcode, standalone and swiftly-managed toolchains.

    Each source degrades to an empty list on failure, so one broken source
    never hides the others.
    """

    def __init__(
        self,
        settings: ManagerSettings,
        runner: ProcessRunner | None = None,
        client: ManagerClient | None = None,
    ):
        self._settings = settings
        self._runner = runner or ProcessRunner()
        self._client = client or ManagerClient(settings, self._runner)

    def find_xcode_installs(self) -> list[Path]:
        """Finds Xcode installs via Spotlight plus the `xcode-select` choice."""
        if self._settings.platform != DARWIN:
            return []

        installs: list[Path] = []
        try:
            result = self._runner.run(
                ["mdfind", self._settings.xcode_query],
                timeout_sec=self._settings.list_timeout_sec,
            )
            installs = [Path(line) for line in result.stdout.splitlines() if line.strip()]
        except ToolchainManagerError as e:
            logger.warning(f"Failed to query the Spotlight index for Xcode: {e}")

        selected = self._selected_xcode()
        if selected is not None and selected not in installs:
            installs.append(selected)
        return installs

    def vendor_toolchains(self) -> list[ToolchainRecord]:
        records = [
            ToolchainRecord(
                name=path.stem,
                version=SystemVersion(name=path.stem),
                source=ToolchainSource.VENDOR,
                location=path,
            )
            for path in self.find_xcode_installs()
        ]
        return sorted(records, key=lambda r: r.location.name if r.location else "", reverse=True)

    def public_toolchains(self) -> list[ToolchainRecord]:
        if self._settings.platform != DARWIN:
            return []

        records: list[ToolchainRecord] = []
        for root in self._settings.public_toolchain_roots:
            for path in find_toolchains_in(root):
                records.append(
                    ToolchainRecord(
                        name=path.name,
                        version=version_from_identifier(path.name),
                        source=ToolchainSource.PUBLIC,
                        location=path,
                    )
                )

        clt = self._settings.command_line_tools_path
        if (clt / SWIFT_BINARY).exists():
            records.append(
                ToolchainRecord(
                    name=clt.name,
                    version=SystemVersion(name=clt.name),
                    source=ToolchainSource.PUBLIC,
                    location=clt,
                )
            )
        return sort_public_or_managed(records)

    def managed_toolchains(self) -> list[ToolchainRecord]:
        return sort_public_or_managed(self._client.list())

    def discover(self, active_path: Path | None = None) -> list[ToolchainRecord]:
        """Returns the union of all sources, each sorted for display.

        Args:
            active_path: Path of the toolchain in use. Vendor and public records
                containing it are marked `in_use`.
        """
        vendor = self.vendor_toolchains()
        public = self.public_toolchains()
        managed = self.managed_toolchains()

        if active_path is not None:
            active = Path(active_path)
            vendor = [replace(r, in_use=True) if _contains(r.location, active) else r for r in vendor]
            public = [replace(r, in_use=True) if _contains(r.location, active) else r for r in public]

        logger.info(
            f"Discovered toolchains vendor={len(vendor)} public={len(public)} managed={len(managed)}"
        )
        return [*vendor, *public, *managed]

    def _selected_xcode(self) -> Path | None:
        try:
            result = self._runner.run(
                ["xcode-select", "-p"], timeout_sec=self._settings.list_timeout_sec
            )
        except ToolchainManagerError as e:
            logger.warning(f"Failed to read the selected Xcode: {e}")
            return None
        return xcode_app_directory(result.stdout.strip())
