import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Final, Union

from .errors import ManagerParseError

KNOWN_VERSION_TYPES: Final[frozenset[str]] = frozenset({"stable", "snapshot", "system"})

# swiftly started supporting `--format=json` in this release.
JSON_OUTPUT_MIN_VERSION: Final[tuple[int, int, int]] = (1, 1, 0)

LATEST_ALIAS_NAME: Final[str] = "swift-latest"

_MANAGER_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?(-dev)?")
_STABLE_RE = re.compile(r"^(?:Swift )?(\d+)\.(\d+)\.(\d+)$")
_MAIN_SNAPSHOT_RE = re.compile(r"^main-snapshot-(\d{4}-\d{2}-\d{2})$")
_RELEASE_SNAPSHOT_RE = re.compile(r"^(\d+)\.(\d+)-snapshot-(\d{4}-\d{2}-\d{2})$")

_STABLE_ID_RE = re.compile(r"^swift-(\d+)(?:\.(\d+))?(?:\.(\d+))?-RELEASE$")
_MAIN_SNAPSHOT_ID_RE = re.compile(r"^swift-DEVELOPMENT-SNAPSHOT-(\d{4}-\d{2}-\d{2})-a$")
_RELEASE_SNAPSHOT_ID_RE = re.compile(
    r"^swift-(\d+)\.(\d+)-DEVELOPMENT-SNAPSHOT-(\d{4}-\d{2}-\d{2})-a$"
)


@dataclass(frozen=True, slots=True, order=True)
class ManagerVersion:
    """Version of the swiftly executable itself (e.g. `1.1.0`)."""

    major: int
    minor: int
    patch: int = 0
    dev: bool = field(default=False, compare=False)

    @classmethod
    def from_string(cls, text: str) -> "ManagerVersion":
        """Parses `swiftly --version` output.

        Raises:
            ManagerParseError: If no version number is present.
        """
        match = _MANAGER_VERSION_RE.search(text)
        if match is None:
            raise ManagerParseError(f'Unable to parse swiftly version string: "{text.strip()}"')
        major, minor, patch, dev = match.groups()
        return cls(int(major), int(minor), int(patch or 0), dev == "-dev")

    @property
    def supports_json_output(self) -> bool:
        return (self.major, self.minor, self.patch) >= JSON_OUTPUT_MIN_VERSION

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True, slots=True)
class StableVersion:
    major: int
    minor: int
    patch: int

    @property
    def name(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def identifier(self) -> str:
        if self.patch == 0:
            if self.minor == 0:
                return f"swift-{self.major}-RELEASE"
            return f"swift-{self.major}.{self.minor}-RELEASE"
        return f"swift-{self.major}.{self.minor}.{self.patch}-RELEASE"

    @property
    def description(self) -> str:
        return f"Swift {self.name}"


@dataclass(frozen=True, slots=True)
class SnapshotVersion:
    """A development snapshot. `branch` is `main` or `<major>.<minor>`."""

    branch: str
    date: str
    major: int | None = field(default=None, compare=False)
    minor: int | None = field(default=None, compare=False)

    @property
    def name(self) -> str:
        return f"{self.branch}-snapshot-{self.date}"

    @property
    def identifier(self) -> str:
        if self.branch == "main":
            return f"swift-DEVELOPMENT-SNAPSHOT-{self.date}-a"
        return f"swift-{self.branch}-DEVELOPMENT-SNAPSHOT-{self.date}-a"

    @property
    def description(self) -> str:
        if self.branch == "main":
            return f"main-snapshot-{self.date}"
        return f"{self.branch} development snapshot {self.date}"


@dataclass(frozen=True, slots=True)
class SystemVersion:
    """A toolchain that is not a swift.org release or snapshot.

    Also stands in for version types this client does not know yet; `kind`
    keeps the discriminator that was reported.
    """

    name: str
    kind: str = "system"

    @property
    def is_known(self) -> bool:
        return self.kind in KNOWN_VERSION_TYPES

    @property
    def identifier(self) -> str:
        return self.name

    @property
    def description(self) -> str:
        return self.name


ToolchainVersion = Union[StableVersion, SnapshotVersion, SystemVersion]


def version_type(version: ToolchainVersion) -> str:
    if isinstance(version, StableVersion):
        return "stable"
    if isinstance(version, SnapshotVersion):
        return "snapshot"
    return version.kind


def parse_toolchain_version(text: str) -> ToolchainVersion:
    """Parses a toolchain name such as `6.0.1` or `main-snapshot-2024-05-01`.

    Raises:
        ManagerParseError: If the name is neither a release nor a snapshot.
    """
    text = text.strip()

    match = _STABLE_RE.match(text)
    if match:
        major, minor, patch = (int(g) for g in match.groups())
        return StableVersion(major, minor, patch)

    match = _MAIN_SNAPSHOT_RE.match(text)
    if match:
        return SnapshotVersion(branch="main", date=match.group(1))

    match = _RELEASE_SNAPSHOT_RE.match(text)
    if match:
        major, minor = int(match.group(1)), int(match.group(2))
        return SnapshotVersion(
            branch=f"{major}.{minor}", date=match.group(3), major=major, minor=minor
        )

    raise ManagerParseError(f'invalid toolchain version: "{text}"')


def version_from_identifier(identifier: str) -> ToolchainVersion:
    """Maps an on-disk bundle name back to a version.

    Accepts names with or without the `.xctoolchain` suffix. Names that do not
    follow the swift.org convention become a `SystemVersion`.
    """
    name = identifier.removesuffix(".xctoolchain")

    match = _STABLE_ID_RE.match(name)
    if match:
        major, minor, patch = match.groups()
        return StableVersion(int(major), int(minor or 0), int(patch or 0))

    match = _MAIN_SNAPSHOT_ID_RE.match(name)
    if match:
        return SnapshotVersion(branch="main", date=match.group(1))

    match = _RELEASE_SNAPSHOT_ID_RE.match(name)
    if match:
        major, minor = int(match.group(1)), int(match.group(2))
        return SnapshotVersion(
            branch=f"{major}.{minor}", date=match.group(3), major=major, minor=minor
        )

    return SystemVersion(name=name)


def _as_int(value: Any) -> int | None:
    # bool is an int subclass; JSON true/false is never a version component.
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return str(value).strip()


def version_from_payload(payload: Any) -> ToolchainVersion | None:
    """Builds a version from a swiftly JSON `version` object.

    Unknown keys are ignored. An unrecognized `type` falls back to
    `SystemVersion(name, kind=type)` so newer swiftly releases keep working.

    Returns:
        The parsed version, or None if `payload` is not an object with a `type`.
    """
    if not isinstance(payload, dict):
        return None

    kind = _as_text(payload.get("type"))
    if not kind:
        return None
    name = _as_text(payload.get("name"))

    if kind == "stable":
        major = _as_int(payload.get("major"))
        minor = _as_int(payload.get("minor"))
        patch = _as_int(payload.get("patch"))
        if major is not None and minor is not None and patch is not None:
            return StableVersion(major, minor, patch)
        try:
            return parse_toolchain_version(name)
        except ManagerParseError:
            return None

    if kind == "snapshot":
        branch = _as_text(payload.get("branch"))
        snapshot_date = _as_text(payload.get("date"))
        if not (branch and snapshot_date):
            try:
                return parse_toolchain_version(name)
            except ManagerParseError:
                return None
        return SnapshotVersion(
            branch=branch,
            date=snapshot_date,
            major=_as_int(payload.get("major")),
            minor=_as_int(payload.get("minor")),
        )

    if not name:
        return None
    return SystemVersion(name=name, kind=kind)


def _date_ordinal(text: str) -> int:
    try:
        return date.fromisoformat(text).toordinal()
    except ValueError:
        return 0


def version_sort_key(version: ToolchainVersion) -> tuple:
    """Sort key that orders versions latest first.

    Stable releases come first (highest triple first), then snapshots (newest
    date first), then system and unrecognized versions by name.
    """
    if isinstance(version, StableVersion):
        return (0, -version.major, -version.minor, -version.patch, "")
    if isinstance(version, SnapshotVersion):
        return (1, -_date_ordinal(version.date), 0, 0, version.branch)
    return (2, 0, 0, 0, version.name)


def sort_latest_first(versions: list[ToolchainVersion]) -> list[ToolchainVersion]:
    return sorted(versions, key=version_sort_key)
