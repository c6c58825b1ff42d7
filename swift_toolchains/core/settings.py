from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from .platforms import DARWIN, LINUX

MANAGER_EXECUTABLE: Final[str] = "swiftly"
CONFIG_FILE_NAME: Final[str] = "config.json"

XCODE_BUNDLE_ID_QUERY: Final[str] = "kMDItemCFBundleIdentifier == 'com.apple.dt.Xcode'"
COMMAND_LINE_TOOLS_PATH: Final[Path] = Path("/Library/Developer/CommandLineTools")

LIST_TIMEOUT_SEC: Final[int] = 60
# Toolchain downloads are large; installs are bounded only by cancellation.
INSTALL_TIMEOUT_SEC: Final[int | None] = None


def default_home_dir(platform: str, environ: Mapping[str, str], home: Path) -> Path:
    """Returns the directory swiftly uses when `SWIFTLY_HOME_DIR` is not set.

    Args:
        platform: Normalized platform name.
        environ: Environment mapping to read `XDG_DATA_HOME` from.
        home: The user's home directory.

    Returns:
        The default swiftly home directory for the platform.
    """
    if platform == LINUX:
        xdg_data_home = environ.get("XDG_DATA_HOME")
        if xdg_data_home:
            return Path(xdg_data_home) / "swiftly"
        return home / ".local" / "share" / "swiftly"
    return home / ".swiftly"


def default_public_toolchain_roots(home: Path) -> tuple[Path, ...]:
    return (
        Path("/Library/Developer/Toolchains"),
        home / "Library" / "Developer" / "Toolchains",
    )


@dataclass(frozen=True, slots=True)
class ManagerSettings:
    """Locations and commands used to talk to swiftly and the host system.

    Attributes:
        platform: Normalized platform name the settings were resolved for.
        executable: swiftly executable name or path.
        home_dir: swiftly home directory (holds `config.json`).
        toolchains_root: Directory swiftly installs toolchains into.
        public_toolchain_roots: Directories scanned for `swift-*` bundles.
        command_line_tools_path: Command Line Tools install on macOS.
        privilege_helper: Argument prefix used to run a script as root.
        xcode_query: Spotlight query used to find Xcode installs.
        list_timeout_sec: Timeout for read-only CLI calls.
        install_timeout_sec: Timeout for installs (None waits until done).
    """

    platform: str
    executable: str = MANAGER_EXECUTABLE
    home_dir: Path | None = None
    toolchains_root: Path | None = None
    public_toolchain_roots: tuple[Path, ...] = ()
    command_line_tools_path: Path = COMMAND_LINE_TOOLS_PATH
    privilege_helper: tuple[str, ...] = ("pkexec",)
    xcode_query: str = XCODE_BUNDLE_ID_QUERY
    list_timeout_sec: int = LIST_TIMEOUT_SEC
    install_timeout_sec: int | None = INSTALL_TIMEOUT_SEC
    extra_env: Mapping[str, str] = field(default_factory=dict)

    @property
    def config_path(self) -> Path | None:
        if self.home_dir is None:
            return None
        return self.home_dir / CONFIG_FILE_NAME

    @classmethod
    def from_environment(
        cls,
        platform: str,
        environ: Mapping[str, str],
        home: Path | None = None,
    ) -> "ManagerSettings":
        """Resolves settings from environment variables.

        `SWIFTLY_HOME_DIR` and `SWIFTLY_TOOLCHAINS_DIR` override the platform
        defaults. `SWIFTLY_BIN_DIR` points at the executable when swiftly is not
        on `PATH`.
        """
        home = home or Path.home()

        home_override = environ.get("SWIFTLY_HOME_DIR")
        home_dir = (
            Path(home_override)
            if home_override
            else default_home_dir(platform, environ, home)
        )

        toolchains_override = environ.get("SWIFTLY_TOOLCHAINS_DIR")
        toolchains_root = (
            Path(toolchains_override) if toolchains_override else home_dir / "toolchains"
        )

        bin_dir = environ.get("SWIFTLY_BIN_DIR")
        executable = str(Path(bin_dir) / MANAGER_EXECUTABLE) if bin_dir else MANAGER_EXECUTABLE

        roots = default_public_toolchain_roots(home) if platform == DARWIN else ()

        return cls(
            platform=platform,
            executable=executable,
            home_dir=home_dir,
            toolchains_root=toolchains_root,
            public_toolchain_roots=roots,
        )
