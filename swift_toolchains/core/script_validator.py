"""Fail-closed validation of swiftly post-install scripts.

A post-install script is run as root, so it is only offered to the user when
every command line is a plain package installation through an allow-listed
package manager. Anything the grammar cannot prove safe rejects the whole
script.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final

_SHELL_METACHARACTERS: Final[frozenset[str]] = frozenset("|&;$`<>()\\'\"*?[]{}!~#=\n")
_PACKAGE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+\-]*$")


@dataclass(frozen=True, slots=True)
class PackageManagerRule:
    """The one command shape a package-manager binary may be used with.

    Attributes:
        command: Exact tokens required between the binary and the package
            names, e.g. `("-y", "install")`.
    """

    command: tuple[str, ...]

    @property
    def subcommand(self) -> str | None:
        return next((token for token in self.command if not token.startswith("-")), None)

    @property
    def flags(self) -> tuple[str, ...]:
        return tuple(token for token in self.command if token.startswith("-"))


@dataclass(frozen=True, slots=True)
class ScriptPolicy:
    """Allow-list used by `parse_post_install_script`.

    The default is the narrowest set swiftly is known to emit:
    `apt-get -y install <pkg>...` and `yum install <pkg>...`. The mapping is
    stored read-only.
    """

    managers: Mapping[str, PackageManagerRule] = field(
        default_factory=lambda: {
            "apt-get": PackageManagerRule(command=("-y", "install")),
            "yum": PackageManagerRule(command=("install",)),
        }
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "managers", MappingProxyType(dict(self.managers)))


DEFAULT_POLICY: Final[ScriptPolicy] = ScriptPolicy()


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    """One command line of a post-install script.

    Attributes:
        line_number: 1-based line number in the script.
        text: The stripped line.
        binary: First token.
        subcommand: The allow-listed subcommand, if one was found.
        flags: Flags in the order they appeared.
        packages: Package name arguments.
        reason: Why the line was rejected, or None if it is allowed.
    """

    line_number: int
    text: str
    binary: str = ""
    subcommand: str | None = None
    flags: tuple[str, ...] = ()
    packages: tuple[str, ...] = ()
    reason: str | None = None

    @property
    def is_allowed(self) -> bool:
        return self.reason is None


@dataclass(frozen=True, slots=True)
class ScriptVerdict:
    accepted: bool
    reason: str = ""


@dataclass(frozen=True, slots=True)
class PostInstallScript:
    """A parsed post-install script. `verdict` is decided once, at parse time."""

    raw_text: str
    lines: tuple[ParsedCommand, ...]
    verdict: ScriptVerdict

    @property
    def invalid_commands(self) -> list[str]:
        return [line.text for line in self.lines if not line.is_allowed]

    @property
    def install_commands(self) -> list[str]:
        return [line.text for line in self.lines if line.is_allowed]

    @property
    def summary(self) -> str:
        summary = "The script will perform the following actions:\n"
        if self.install_commands:
            summary += "• Install system packages using package manager\n"
            summary += f"• Commands: {'; '.join(self.install_commands)}"
        else:
            summary += "• No package installations detected"
        return summary


def _rejected(line_number: int, text: str, binary: str, reason: str) -> ParsedCommand:
    return ParsedCommand(line_number=line_number, text=text, binary=binary, reason=reason)


def parse_command(line_number: int, text: str, policy: ScriptPolicy = DEFAULT_POLICY) -> ParsedCommand:
    """Checks a single non-comment line against the allow-list grammar.

    Grammar: `<binary> <command tokens> <package>+`, where the binary and
    its exact command tokens come from `policy`. Flags are only accepted at
    the positions the rule names them.
    """
    bad_chars = sorted(ch for ch in set(text) if ch in _SHELL_METACHARACTERS)
    tokens = text.split()
    binary = tokens[0] if tokens else ""

    if bad_chars:
        return _rejected(line_number, text, binary, f"shell metacharacters {''.join(bad_chars)!r}")

    rule = policy.managers.get(binary)
    if rule is None:
        return _rejected(line_number, text, binary, f"'{binary}' is not an allowed package manager")

    expected = " ".join((binary, *rule.command))
    width = len(rule.command)
    head = tuple(tokens[1 : 1 + width])
    if head != rule.command:
        if len(head) < width and head == rule.command[: len(head)]:
            return _rejected(line_number, text, binary, f"incomplete command, expected '{expected}'")
        return _rejected(line_number, text, binary, f"command must start with '{expected}'")

    packages = tokens[1 + width :]
    if not packages:
        return _rejected(line_number, text, binary, "no packages to install")
    for token in packages:
        if token.startswith("-"):
            return _rejected(line_number, text, binary, f"flag '{token}' is not allowed")
        if not _PACKAGE_NAME_RE.match(token):
            return _rejected(line_number, text, binary, f"'{token}' is not a package name")

    return ParsedCommand(
        line_number=line_number,
        text=text,
        binary=binary,
        subcommand=rule.subcommand,
        flags=rule.flags,
        packages=tuple(packages),
    )


def parse_post_install_script(
    raw_text: str, policy: ScriptPolicy = DEFAULT_POLICY
) -> PostInstallScript:
    """Parses and validates a post-install script.

    Blank lines and `#` comments are skipped. A single disallowed line rejects
    the entire script, and so does a script without any command.
    """
    commands: list[ParsedCommand] = []
    for index, line in enumerate(raw_text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        commands.append(parse_command(index, stripped, policy))

    rejected = [c for c in commands if not c.is_allowed]
    if rejected:
        first = rejected[0]
        verdict = ScriptVerdict(
            accepted=False,
            reason=f"{len(rejected)} unverifiable command(s); line {first.line_number}: {first.reason}",
        )
    elif not commands:
        verdict = ScriptVerdict(accepted=False, reason="script contains no commands")
    else:
        verdict = ScriptVerdict(accepted=True)

    return PostInstallScript(raw_text=raw_text, lines=tuple(commands), verdict=verdict)
