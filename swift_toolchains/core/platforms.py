import sys
from typing import Final

DARWIN: Final[str] = "darwin"
LINUX: Final[str] = "linux"
WINDOWS: Final[str] = "win32"

MANAGER_PLATFORMS: Final[frozenset[str]] = frozenset({DARWIN, LINUX})

# Post-install scripts need elevated privileges to add system packages.
PRIVILEGED_POST_INSTALL_PLATFORM: Final[str] = LINUX

# Only macOS can end up with swiftly and Xcode toolchains side by side.
MISMATCH_PLATFORM: Final[str] = DARWIN


def current_platform() -> str:
    """Returns the normalized platform name (`darwin`, `linux`, `win32`, ...)."""
    if sys.platform.startswith("linux"):
        return LINUX
    return sys.platform


def is_manager_supported(platform: str) -> bool:
    return platform in MANAGER_PLATFORMS
