import json
from pathlib import Path

import pytest

from swift_toolchains.application.manager_client import ManagerClient
from swift_toolchains.core.errors import (
    ManagerConfigError,
    MissingToolchainError,
    ProcessExitError,
    ProcessSpawnError,
    UnsupportedPlatformError,
)
from swift_toolchains.core.settings import ManagerSettings
from swift_toolchains.core.toolchain_types import InstallState
from swift_toolchains.core.versions import ManagerVersion, StableVersion
from swift_toolchains.infra.process import ProcessResult

_LIST_JSON = json.dumps(
    {
        "toolchains": [
            {"version": {"type": "stable", "name": "6.0.1", "major": 6, "minor": 0, "patch": 1},
             "inUse": True, "location": "/h/toolchains/6.0.1"},
            {"version": {"type": "experimental", "name": "exp-1"}},
            {"version": {"type": "stable", "name": "5.10.1", "major": 5, "minor": 10, "patch": 1}},
        ]
    }
)


class _DummyRunner:
    """Answers `swiftly` invocations from a table keyed by argv."""

    def __init__(self, responses: dict[tuple[str, ...], object] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[list[str]] = []
        self.cwds: list[object] = []

    def run(self, argv: list[str], **kwargs: object) -> ProcessResult:
        self.calls.append(list(argv))
        self.cwds.append(kwargs.get("cwd"))
        response = self.responses.get(tuple(argv))
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise ProcessExitError(argv, 1, "unexpected call")
        return ProcessResult(stdout=str(response), stderr="", returncode=0)

    def make_fifo(self, path: Path) -> None:
        self.calls.append(["mkfifo", str(path)])


def _settings(tmp_path: Path, platform: str = "linux") -> ManagerSettings:
    return ManagerSettings(
        platform=platform,
        home_dir=tmp_path,
        toolchains_root=tmp_path / "toolchains",
    )


def _write_config(tmp_path: Path, config: dict) -> None:
    (tmp_path / "config.json").write_text(json.dumps(config), encoding="utf-8")


def test_unsupported_platform_never_spawns(tmp_path) -> None:
    runner = _DummyRunner()
    client = ManagerClient(_settings(tmp_path, "win32"), runner, which=lambda name: "/bin/x")

    assert client.is_supported() is False
    assert client.is_installed() is False
    assert client.version() is None
    assert client.supports_json_output() is False
    assert client.list() == []
    assert client.list_available() == []
    assert client.active_toolchain() is None
    assert client.use("6.0.1") is False
    assert client.is_managed(tmp_path / "toolchains" / "6.0.1") is False
    assert client.installed_toolchain_paths() == []

    outcome = client.install_toolchain("6.0.1")

    assert outcome.state == InstallState.FAILED
    assert isinstance(outcome.error, UnsupportedPlatformError)
    assert "6.0.1" in outcome.message
    assert runner.calls == []


def test_is_installed_uses_executable_lookup(tmp_path) -> None:
    found = ManagerClient(_settings(tmp_path), _DummyRunner(), which=lambda name: "/usr/bin/swiftly")
    missing = ManagerClient(_settings(tmp_path), _DummyRunner(), which=lambda name: None)

    assert found.is_installed() is True
    assert missing.is_installed() is False


def test_supports_json_output_threshold(tmp_path) -> None:
    old = ManagerClient(_settings(tmp_path), _DummyRunner({("swiftly", "--version"): "1.0.0\n"}))
    new = ManagerClient(_settings(tmp_path), _DummyRunner({("swiftly", "--version"): "1.1.0\n"}))

    assert old.version() == ManagerVersion(1, 0, 0)
    assert old.supports_json_output() is False
    assert new.supports_json_output() is True


def test_list_uses_json_output_and_drops_unknown_types(tmp_path) -> None:
    runner = _DummyRunner(
        {
            ("swiftly", "--version"): "1.1.0",
            ("swiftly", "list", "--format=json"): _LIST_JSON,
        }
    )

    records = ManagerClient(_settings(tmp_path), runner).list()

    assert [r.name for r in records] == ["6.0.1", "5.10.1"]
    assert records[0].in_use is True
    assert records[0].location == Path("/h/toolchains/6.0.1")
    assert runner.calls[-1] == ["swiftly", "list", "--format=json"]


def test_list_on_legacy_manager_reads_config_without_json_call(tmp_path) -> None:
    _write_config(
        tmp_path,
        {"installedToolchains": ["5.9.2", 42, "6.0.1", None], "inUse": "6.0.1"},
    )
    runner = _DummyRunner({("swiftly", "--version"): "1.0.0"})

    records = ManagerClient(_settings(tmp_path), runner).list()

    assert [r.name for r in records] == ["6.0.1", "5.9.2"]
    assert records[0].version == StableVersion(6, 0, 1)
    assert records[0].in_use is True
    assert records[0].location == tmp_path / "toolchains" / "6.0.1"
    assert runner.calls == [["swiftly", "--version"]]


def test_list_on_legacy_manager_without_config_is_empty(tmp_path) -> None:
    runner = _DummyRunner({("swiftly", "--version"): "1.0.0"})

    assert ManagerClient(_settings(tmp_path), runner).list() == []


def test_list_degrades_when_swiftly_is_missing(tmp_path) -> None:
    runner = _DummyRunner(
        {("swiftly", "--version"): ProcessSpawnError(["swiftly", "--version"], "not found")}
    )

    assert ManagerClient(_settings(tmp_path), runner).list() == []
    assert runner.calls == [["swiftly", "--version"]]


def test_list_degrades_on_cli_failure(tmp_path) -> None:
    runner = _DummyRunner(
        {
            ("swiftly", "--version"): "1.1.0",
            ("swiftly", "list", "--format=json"): ProcessExitError(["swiftly"], 1, "boom"),
        }
    )

    assert ManagerClient(_settings(tmp_path), runner).list() == []


def test_list_available_passes_filter(tmp_path) -> None:
    payload = json.dumps(
        {
            "toolchains": [
                {"version": {"type": "snapshot", "name": "main-snapshot-2024-05-01",
                             "branch": "main", "date": "2024-05-01"}},
            ]
        }
    )
    runner = _DummyRunner(
        {
            ("swiftly", "--version"): "1.1.0",
            ("swiftly", "list-available", "--format=json", "main-snapshot"): payload,
        }
    )

    records = ManagerClient(_settings(tmp_path), runner).list_available("main-snapshot")

    assert [(r.name, r.installed) for r in records] == [("main-snapshot-2024-05-01", False)]


def test_list_available_on_legacy_manager_is_empty(tmp_path) -> None:
    runner = _DummyRunner({("swiftly", "--version"): "1.0.9"})

    assert ManagerClient(_settings(tmp_path), runner).list_available() == []
    assert runner.calls == [["swiftly", "--version"]]


def test_active_toolchain_combines_name_and_location(tmp_path) -> None:
    runner = _DummyRunner(
        {
            ("swiftly", "use", "--print-location"): "/h/toolchains/6.0.1\n",
            ("swiftly", "--version"): "1.1.0",
            ("swiftly", "use", "--format=json"): '{"version": "6.0.1"}',
        }
    )

    active = ManagerClient(_settings(tmp_path), runner).active_toolchain(cwd=tmp_path)

    assert active is not None
    assert active.name == "6.0.1"
    assert active.location == Path("/h/toolchains/6.0.1")
    assert runner.cwds[0] == tmp_path


def test_active_toolchain_on_legacy_manager_reads_in_use_from_config(tmp_path) -> None:
    _write_config(tmp_path, {"installedToolchains": ["5.9.2"], "inUse": "5.9.2"})
    runner = _DummyRunner(
        {
            ("swiftly", "use", "--print-location"): "/h/toolchains/5.9.2\n",
            ("swiftly", "--version"): "1.0.0",
        }
    )

    active = ManagerClient(_settings(tmp_path), runner).active_toolchain()

    assert active is not None
    assert active.name == "5.9.2"


def test_active_toolchain_reports_missing_pinned_version(tmp_path) -> None:
    stderr = (
        "The swift version file uses toolchain version 6.1.2, but it doesn't match "
        "any of the installed toolchains."
    )
    runner = _DummyRunner(
        {
            ("swiftly", "use", "--print-location"): ProcessExitError(
                ["swiftly", "use", "--print-location"], 1, stderr
            )
        }
    )

    with pytest.raises(MissingToolchainError) as excinfo:
        ManagerClient(_settings(tmp_path), runner).active_toolchain(cwd=tmp_path)

    assert excinfo.value.version == "6.1.2"


def test_active_toolchain_degrades_on_other_failures(tmp_path) -> None:
    runner = _DummyRunner(
        {("swiftly", "use", "--print-location"): ProcessExitError(["swiftly"], 1, "boom")}
    )

    assert ManagerClient(_settings(tmp_path), runner).active_toolchain() is None


def test_use_in_folder_pins_with_swift_version_file(tmp_path) -> None:
    runner = _DummyRunner({("swiftly", "use", "-y", "6.0.1"): ""})

    assert ManagerClient(_settings(tmp_path), runner).use("6.0.1", cwd=tmp_path) is True

    assert (tmp_path / ".swift-version").exists()
    assert runner.cwds == [tmp_path]


def test_use_without_folder_sets_global_default(tmp_path) -> None:
    runner = _DummyRunner({("swiftly", "use", "-y", "--global-default", "6.0.1"): ""})

    assert ManagerClient(_settings(tmp_path), runner).use("6.0.1") is True
    assert runner.calls == [["swiftly", "use", "-y", "--global-default", "6.0.1"]]


def test_is_managed_checks_home_dir(tmp_path) -> None:
    client = ManagerClient(_settings(tmp_path), _DummyRunner())

    assert client.is_managed(tmp_path / "toolchains" / "6.0.1" / "usr" / "bin" / "swift")
    assert not client.is_managed("/usr/bin/swift")


def test_installed_toolchain_paths_joins_root(tmp_path) -> None:
    _write_config(tmp_path, {"installedToolchains": ["6.0.1", {"bad": 1}, "5.10.1"]})

    paths = ManagerClient(_settings(tmp_path), _DummyRunner()).installed_toolchain_paths()

    assert paths == [tmp_path / "toolchains" / "6.0.1", tmp_path / "toolchains" / "5.10.1"]


def test_installed_toolchain_paths_requires_config(tmp_path) -> None:
    with pytest.raises(ManagerConfigError):
        ManagerClient(_settings(tmp_path), _DummyRunner()).installed_toolchain_paths()

    (tmp_path / "config.json").write_text("[]", encoding="utf-8")
    with pytest.raises(ManagerConfigError):
        ManagerClient(_settings(tmp_path), _DummyRunner()).installed_toolchain_paths()
