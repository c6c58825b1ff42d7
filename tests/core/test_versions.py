import pytest

from swift_toolchains.core.errors import ManagerParseError
from swift_toolchains.core.versions import (
    ManagerVersion,
    SnapshotVersion,
    StableVersion,
    SystemVersion,
    parse_toolchain_version,
    sort_latest_first,
    version_from_identifier,
    version_from_payload,
    version_type,
)


def test_manager_version_parses_triple_with_noise() -> None:
    assert ManagerVersion.from_string("swiftly 1.1.0\n") == ManagerVersion(1, 1, 0)


def test_manager_version_defaults_patch_and_flags_dev() -> None:
    assert ManagerVersion.from_string("1.2") == ManagerVersion(1, 2, 0)
    dev = ManagerVersion.from_string("1.2.0-dev")
    assert dev.dev is True
    assert dev == ManagerVersion(1, 2, 0)


def test_manager_version_rejects_text_without_numbers() -> None:
    with pytest.raises(ManagerParseError):
        ManagerVersion.from_string("swiftly unknown")


def test_json_output_threshold_is_one_one_zero() -> None:
    assert ManagerVersion(1, 0, 0).supports_json_output is False
    assert ManagerVersion(1, 0, 9).supports_json_output is False
    assert ManagerVersion(1, 1, 0).supports_json_output is True
    assert ManagerVersion(2, 0, 0).supports_json_output is True


def test_parse_toolchain_version_handles_release_and_snapshots() -> None:
    assert parse_toolchain_version("6.0.1") == StableVersion(6, 0, 1)
    assert parse_toolchain_version("Swift 5.10.1") == StableVersion(5, 10, 1)
    assert parse_toolchain_version("main-snapshot-2024-05-01") == SnapshotVersion(
        branch="main", date="2024-05-01"
    )
    release_snapshot = parse_toolchain_version("6.0-snapshot-2024-05-01")
    assert release_snapshot == SnapshotVersion(branch="6.0", date="2024-05-01")
    assert (release_snapshot.major, release_snapshot.minor) == (6, 0)


def test_parse_toolchain_version_rejects_unknown_names() -> None:
    with pytest.raises(ManagerParseError):
        parse_toolchain_version("xcode")


def test_stable_identifier_drops_zero_components() -> None:
    assert StableVersion(6, 0, 1).identifier == "swift-6.0.1-RELEASE"
    assert StableVersion(6, 1, 0).identifier == "swift-6.1-RELEASE"
    assert StableVersion(6, 0, 0).identifier == "swift-6-RELEASE"


def test_snapshot_identifier_matches_bundle_naming() -> None:
    assert (
        SnapshotVersion("main", "2024-05-01").identifier
        == "swift-DEVELOPMENT-SNAPSHOT-2024-05-01-a"
    )
    assert (
        SnapshotVersion("6.0", "2024-05-01", 6, 0).identifier
        == "swift-6.0-DEVELOPMENT-SNAPSHOT-2024-05-01-a"
    )


def test_version_from_identifier_maps_bundle_names_back() -> None:
    assert version_from_identifier("swift-6.0.1-RELEASE.xctoolchain") == StableVersion(6, 0, 1)
    assert version_from_identifier("swift-6-RELEASE") == StableVersion(6, 0, 0)
    assert version_from_identifier(
        "swift-DEVELOPMENT-SNAPSHOT-2024-05-01-a.xctoolchain"
    ) == SnapshotVersion("main", "2024-05-01")
    assert version_from_identifier("swift-latest.xctoolchain") == SystemVersion("swift-latest")


def test_stable_payload_equality_ignores_unknown_keys() -> None:
    plain = version_from_payload(
        {"type": "stable", "name": "6.0.1", "major": 6, "minor": 0, "patch": 1}
    )
    extended = version_from_payload(
        {
            "type": "stable",
            "name": "Swift 6.0.1",
            "major": 6,
            "minor": 0,
            "patch": 1,
            "channel": "release",
            "extra": {"nested": [1, 2, 3]},
        }
    )

    assert plain == extended == StableVersion(6, 0, 1)


def test_stable_payload_without_numbers_recovers_from_name() -> None:
    assert version_from_payload({"type": "stable", "name": "5.10.1"}) == StableVersion(5, 10, 1)


def test_payload_with_unknown_type_keeps_discriminator() -> None:
    version = version_from_payload({"type": "nightly", "name": "nightly-2030"})

    assert version == SystemVersion(name="nightly-2030", kind="nightly")
    assert isinstance(version, SystemVersion)
    assert version.is_known is False
    assert version_type(version) == "nightly"


def test_payload_without_type_is_not_a_version() -> None:
    assert version_from_payload({"name": "6.0.1"}) is None
    assert version_from_payload("6.0.1") is None


def test_sort_latest_first_orders_stable_then_snapshot_then_system() -> None:
    versions = [
        SystemVersion("xcode"),
        SnapshotVersion("main", "2024-01-01"),
        StableVersion(5, 10, 1),
        SnapshotVersion("main", "2024-05-01"),
        StableVersion(6, 0, 1),
    ]

    assert sort_latest_first(versions) == [
        StableVersion(6, 0, 1),
        StableVersion(5, 10, 1),
        SnapshotVersion("main", "2024-05-01"),
        SnapshotVersion("main", "2024-01-01"),
        SystemVersion("xcode"),
    ]
