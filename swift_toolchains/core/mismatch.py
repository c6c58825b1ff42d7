"""Best-effort detection of swiftly/Xcode toolchain mismatches on macOS.

A build that mixes a swiftly-installed compiler with modules or tools from an
Xcode toolchain tends to fail with module-format or compiler-crash errors. The
detector looks for evidence of both toolchains plus a compatibility failure;
it never changes anything itself.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Final

from .platforms import MISMATCH_PLATFORM

DOCUMENTATION_URL: Final[str] = (
    "https://docs.swift.org/vscode/documentation/userdocs/supported-toolchains"
)

WARNING_MESSAGE: Final[str] = (
    "Detected a likely Swift toolchain mismatch: Swiftly and Xcode toolchains appear "
    "to be from different versions. Update your Swiftly toolchain or switch/update "
    "Xcode so both toolchains are compatible."
)

_MANAGER_PATH_MARKERS: Final[tuple[str, ...]] = (
    ".swiftly/toolchains",
    "\\.swiftly\\toolchains",
)
_VENDOR_PATH_MARKERS: Final[tuple[str, ...]] = (
    "xcodedefault.xctoolchain",
    "/applications/xcode",
    "contents/developer/toolchains",
)
_MODULE_MISMATCH_MARKERS: Final[tuple[str, ...]] = (
    "different version of the compiler",
    "module was created for",
    "cannot load underlying module",
    "failed to build module",
    "unable to load standard library for target",
)
_FRONTEND_CRASH_MARKERS: Final[tuple[str, ...]] = ("swift-frontend command failed",)
_FAILURE_MARKERS: Final[tuple[str, ...]] = ("error:", "fatal error", "failed")

_SWIFTLANG_BANNER_RE = re.compile(r"swiftlang-(\d+\.\d+(?:\.\d+)?(?:\.\d+)?)", re.IGNORECASE)


class ToolchainAuthority(str, Enum):
    """Who manages the active toolchain."""

    SWIFTLY = "swiftly"
    XCRUN = "xcrun"
    SWIFTENV = "swiftenv"
    UNKNOWN = "unknown"


class SignalKind(str, Enum):
    MANAGER_PATH = "manager_path"
    VENDOR_PATH = "vendor_path"
    MANAGER_ASSERTED = "manager_asserted"
    MODULE_VERSION_MISMATCH = "module_version_mismatch"
    COMPILER_BANNER_MISMATCH = "compiler_banner_mismatch"
    FRONTEND_CRASH = "frontend_crash"


class Remediation(str, Enum):
    SELECT_TOOLCHAIN = "select_toolchain"
    OPEN_DOCUMENTATION = "open_documentation"


_COMPATIBILITY_SIGNALS: Final[frozenset[SignalKind]] = frozenset(
    {
        SignalKind.MODULE_VERSION_MISMATCH,
        SignalKind.COMPILER_BANNER_MISMATCH,
        SignalKind.FRONTEND_CRASH,
    }
)


@dataclass(frozen=True, slots=True)
class MismatchContext:
    platform: str
    authority: ToolchainAuthority = ToolchainAuthority.UNKNOWN


@dataclass(frozen=True, slots=True)
class MismatchVerdict:
    """Result of one detection run.

    `signals` lists every piece of evidence that fired, even when the verdict
    is negative. `remediations` is empty unless a mismatch was detected.
    """

    detected: bool
    signals: frozenset[SignalKind] = frozenset()
    remediations: tuple[Remediation, ...] = ()


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def has_compiler_banner_mismatch(output: str) -> bool:
    """Returns True if two different `swiftlang-X` banners appear in `output`."""
    versions: set[str] = set()
    for match in _SWIFTLANG_BANNER_RE.finditer(output):
        versions.add(match.group(1))
        if len(versions) > 1:
            return True
    return False


def collect_signals(output: str, context: MismatchContext) -> frozenset[SignalKind]:
    lower = output.lower()
    signals: set[SignalKind] = set()

    if _contains_any(lower, _MANAGER_PATH_MARKERS):
        signals.add(SignalKind.MANAGER_PATH)
    if _contains_any(lower, _VENDOR_PATH_MARKERS):
        signals.add(SignalKind.VENDOR_PATH)
    if context.authority == ToolchainAuthority.SWIFTLY:
        signals.add(SignalKind.MANAGER_ASSERTED)

    if _contains_any(lower, _MODULE_MISMATCH_MARKERS):
        signals.add(SignalKind.MODULE_VERSION_MISMATCH)
    if _contains_any(lower, _FRONTEND_CRASH_MARKERS):
        signals.add(SignalKind.FRONTEND_CRASH)
    # Two banners alone are common in verbose logs; require a failure too.
    if _contains_any(lower, _FAILURE_MARKERS) and has_compiler_banner_mismatch(output):
        signals.add(SignalKind.COMPILER_BANNER_MISMATCH)

    return frozenset(signals)


def detect_toolchain_mismatch(output: str, context: MismatchContext) -> MismatchVerdict:
    """Decides whether compiler output looks like a swiftly/Xcode mismatch.

    All of the following must hold:
      1. the platform is macOS;
      2. the output mentions an Xcode toolchain path, and either a swiftly
         toolchain path or the context says swiftly manages the active toolchain;
      3. at least one compatibility failure signal is present.

    Args:
        output: Raw stdout+stderr of a build or compile command.
        context: Platform and toolchain authority of the active toolchain.

    Returns:
        The verdict with every signal that fired.
    """
    if context.platform != MISMATCH_PLATFORM:
        return MismatchVerdict(detected=False)

    signals = collect_signals(output, context)
    two_authorities = SignalKind.VENDOR_PATH in signals and (
        SignalKind.MANAGER_PATH in signals or SignalKind.MANAGER_ASSERTED in signals
    )
    compatibility_failure = bool(signals & _COMPATIBILITY_SIGNALS)

    if two_authorities and compatibility_failure:
        return MismatchVerdict(
            detected=True,
            signals=signals,
            remediations=(Remediation.SELECT_TOOLCHAIN, Remediation.OPEN_DOCUMENTATION),
        )
    return MismatchVerdict(detected=False, signals=signals)


class MismatchWarningRegistry:
    """Remembers which folders were already warned about.

    Owned by whoever shows the warning; one instance per session.
    """

    def __init__(self) -> None:
        self._warned: set[str] = set()

    def should_warn(self, key: str) -> bool:
        """Returns True the first time `key` is seen, False afterwards."""
        if key in self._warned:
            return False
        self._warned.add(key)
        return True

    def forget(self, key: str) -> None:
        self._warned.discard(key)

    def clear(self) -> None:
        self._warned.clear()
