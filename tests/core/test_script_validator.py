import pytest

from swift_toolchains.core.script_validator import (
    DEFAULT_POLICY,
    PackageManagerRule,
    ScriptPolicy,
    parse_command,
    parse_post_install_script,
)


def test_apt_get_install_with_assume_yes_is_accepted() -> None:
    script = parse_post_install_script("apt-get -y install build-essential\n")

    assert script.verdict.accepted is True
    assert script.install_commands == ["apt-get -y install build-essential"]
    assert script.invalid_commands == []


def test_comments_and_blank_lines_never_affect_the_verdict() -> None:
    script = parse_post_install_script(
        "#!/bin/sh\n\n# install the packages swift needs\n"
        "apt-get -y install libcurl4-openssl-dev libxml2-dev\n   \n"
        "yum install libstdc++-static\n"
    )

    assert script.verdict.accepted is True
    assert [line.line_number for line in script.lines] == [4, 6]
    assert script.lines[0].packages == ("libcurl4-openssl-dev", "libxml2-dev")
    assert script.lines[1].binary == "yum"


def test_arbitrary_command_is_rejected() -> None:
    script = parse_post_install_script("rm -rf /system\n")

    assert script.verdict.accepted is False
    assert script.invalid_commands == ["rm -rf /system"]


def test_unknown_flag_is_rejected() -> None:
    script = parse_post_install_script("apt-get -y install --unsafe-flag pkg\n")

    assert script.verdict.accepted is False
    assert "--unsafe-flag" in (script.lines[0].reason or "")


def test_non_install_subcommand_is_rejected() -> None:
    assert parse_post_install_script("yum remove important-pkg").verdict.accepted is False
    assert parse_post_install_script("apt-get -y upgrade").verdict.accepted is False


def test_one_invalid_line_rejects_the_whole_script() -> None:
    script = parse_post_install_script(
        "apt-get -y install build-essential\ncurl https://example.invalid/x.sh\n"
    )

    assert script.verdict.accepted is False
    assert script.install_commands == ["apt-get -y install build-essential"]
    assert script.invalid_commands == ["curl https://example.invalid/x.sh"]


def test_shell_metacharacters_are_rejected() -> None:
    lines = [
        "apt-get -y install pkg; rm -rf /",
        "apt-get -y install pkg && reboot",
        "apt-get -y install $(whoami)",
        "apt-get -y install `id`",
        "apt-get -y install pkg > /etc/passwd",
        "apt-get -y install pkg | sh",
        "apt-get -y install 'quoted'",
    ]

    for line in lines:
        command = parse_command(1, line)
        assert command.is_allowed is False, line
        assert command.reason is not None and "metacharacters" in command.reason


def test_install_without_packages_is_rejected() -> None:
    assert parse_command(1, "apt-get -y install").reason == "no packages to install"
    assert parse_command(1, "apt-get -y").reason == (
        "incomplete command, expected 'apt-get -y install'"
    )


def test_empty_script_is_rejected() -> None:
    script = parse_post_install_script("# nothing to do\n\n")

    assert script.verdict.accepted is False
    assert script.verdict.reason == "script contains no commands"


def test_summary_lists_install_commands() -> None:
    script = parse_post_install_script("apt-get -y install a\nyum install b\n")

    assert script.summary == (
        "The script will perform the following actions:\n"
        "• Install system packages using package manager\n"
        "• Commands: apt-get -y install a; yum install b"
    )


def test_only_the_fixed_command_shapes_are_accepted() -> None:
    lines = [
        "apt-get install gcc",
        "apt-get -y -y install gcc",
        "apt-get install -y gcc",
        "yum -y install gcc",
        "yum install -y gcc",
    ]

    for line in lines:
        assert parse_command(1, line).is_allowed is False, line

    assert parse_command(1, "apt-get -y install gcc").is_allowed
    assert parse_command(1, "yum install gcc").is_allowed


def test_default_policy_cannot_be_modified() -> None:
    with pytest.raises(TypeError):
        DEFAULT_POLICY.managers["sh"] = PackageManagerRule(command=("-c",))

    assert set(DEFAULT_POLICY.managers) == {"apt-get", "yum"}


def test_custom_policy_replaces_the_allow_list() -> None:
    managers = {"dnf": PackageManagerRule(command=("--quiet", "install", "-y"))}
    policy = ScriptPolicy(managers=managers)
    managers["sh"] = PackageManagerRule(command=("-c",))

    assert parse_post_install_script("dnf --quiet install -y gcc", policy).verdict.accepted
    assert not parse_post_install_script("apt-get -y install gcc", policy).verdict.accepted
    assert "sh" not in policy.managers
    assert policy.managers["dnf"].subcommand == "install"
    assert policy.managers["dnf"].flags == ("--quiet", "-y")
