import json
import re
from pathlib import Path
from typing import Any

from logly import logger

from .errors import ManagerParseError
from .toolchain_types import ProgressEvent, ToolchainRecord, ToolchainSource
from .versions import SystemVersion, version_from_payload

# swiftly prints through a terminal-aware writer, which can include ANSI sequences.
_ANSI_OSC_RE = re.compile(r"\x1b\][^\x07]*(?:\x07|\x1b\\)")
_ANSI_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_ANSI_2CHAR_RE = re.compile(r"\x1b[@-Z\\-_]")

_MISSING_TOOLCHAIN_RE = re.compile(r"uses toolchain version ([0-9.]+(?:-[a-zA-Z0-9-]+)*)")
_MISSING_TOOLCHAIN_MARKER = "doesn't match any of the installed toolchains"


def sanitize(text: str) -> str:
    """Normalizes newlines and strips common ANSI escape sequences."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _ANSI_OSC_RE.sub("", text)
    text = _ANSI_CSI_RE.sub("", text)
    text = _ANSI_2CHAR_RE.sub("", text)
    return text


def extract_first_json_value(text: str) -> Any | None:
    """Extracts the first JSON value from a noisy text stream.

    This is tolerant to non-JSON prefixes (e.g. banner/log lines). It attempts to decode
    JSON starting at each '{' or '[' occurrence.

    Args:
        text: Text that may contain a JSON value.

    Returns:
        The parsed JSON value, or None if no valid JSON value is found.
    """
    decoder = json.JSONDecoder()
    for i, ch in enumerate(text):
        if ch not in "{[":
            continue
        try:
            value, _ = decoder.raw_decode(text, i)
            return value
        except json.JSONDecodeError:
            continue
    return None


def _toolchain_entries(text: str, command: str) -> list[Any]:
    data = extract_first_json_value(sanitize(text))
    if not (isinstance(data, dict) and isinstance(data.get("toolchains"), list)):
        raise ManagerParseError(f"unexpected output from swiftly {command}")
    return data["toolchains"]


def _flag(item: dict, key: str) -> bool:
    return item.get(key) is True


def _parse_toolchains(text: str, command: str, installed_default: bool) -> list[ToolchainRecord]:
    records: list[ToolchainRecord] = []
    for item in _toolchain_entries(text, command):
        if not isinstance(item, dict):
            continue

        version = version_from_payload(item.get("version"))
        if version is None:
            logger.warning(f"Skipping swiftly {command} entry without a usable version")
            continue
        if isinstance(version, SystemVersion) and not version.is_known:
            logger.info(f"Skipping swiftly {command} entry with unknown type '{version.kind}'")
            continue

        location = item.get("location")
        installed = item.get("installed")
        records.append(
            ToolchainRecord(
                name=version.name,
                version=version,
                installed=installed if isinstance(installed, bool) else installed_default,
                in_use=_flag(item, "inUse"),
                is_default=_flag(item, "isDefault"),
                source=ToolchainSource.MANAGED,
                location=Path(location) if isinstance(location, str) and location else None,
            )
        )
    return records


def parse_list_output(text: str) -> list[ToolchainRecord]:
    """Parses `swiftly list --format=json` into installed toolchain records.

    Entries whose `version.type` is not recognized are dropped. Unknown fields
    are ignored and the order swiftly reported is kept.

    Raises:
        ManagerParseError: If the payload as a whole cannot be interpreted.
    """
    return _parse_toolchains(text, "list", installed_default=True)


def parse_list_available_output(text: str) -> list[ToolchainRecord]:
    """Parses `swiftly list-available --format=json`.

    Raises:
        ManagerParseError: If the payload as a whole cannot be interpreted.
    """
    return _parse_toolchains(text, "list-available", installed_default=False)


def parse_in_use_output(text: str) -> str:
    """Parses `swiftly use --format=json` into the in-use version name."""
    data = extract_first_json_value(sanitize(text))
    if not isinstance(data, dict) or not isinstance(data.get("version"), str):
        raise ManagerParseError("unexpected output from swiftly use")
    return data["version"].strip()


def load_config(text: str) -> dict[str, Any]:
    """Decodes swiftly's `config.json`.

    Raises:
        ManagerParseError: If the file is not a JSON object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManagerParseError(f"swiftly configuration is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManagerParseError("swiftly configuration is not a JSON object")
    return data


def installed_toolchains_from_config(config: dict[str, Any]) -> list[str]:
    """Returns the string entries of `installedToolchains`, in file order."""
    installed = config.get("installedToolchains")
    if not isinstance(installed, list):
        return []
    return [name for name in installed if isinstance(name, str) and name]


def in_use_from_config(config: dict[str, Any]) -> str | None:
    in_use = config.get("inUse")
    if isinstance(in_use, str) and in_use:
        return in_use
    return None


def parse_progress_line(line: str) -> ProgressEvent | None:
    """Decodes one line written to the progress pipe.

    Returns:
        The event, or None for blank lines.

    Raises:
        ManagerParseError: If the line is not a progress object.
    """
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise ManagerParseError(f"invalid progress line: {line}") from e
    if not isinstance(data, dict):
        raise ManagerParseError(f"invalid progress line: {line}")

    complete = data.get("complete")
    if isinstance(complete, dict):
        return ProgressEvent(complete=True, success=complete.get("success") is True)

    step = data.get("step")
    if isinstance(step, dict):
        percent = step.get("percent")
        if isinstance(percent, float):
            percent = int(percent)
        if not isinstance(percent, int) or isinstance(percent, bool):
            percent = None
        text = step.get("text")
        if not isinstance(text, str) or not text:
            text = f"{percent}% complete" if percent is not None else ""
        return ProgressEvent(text=text, percent=percent)

    raise ManagerParseError(f"invalid progress line: {line}")


def parse_missing_toolchain_error(stderr: str) -> str | None:
    """Detects "pinned toolchain is not installed" errors from `swiftly use`.

    Args:
        stderr: swiftly stderr text.

    Returns:
        The missing version, or None for any other error.
    """
    match = _MISSING_TOOLCHAIN_RE.search(stderr)
    if match and _MISSING_TOOLCHAIN_MARKER in stderr:
        return match.group(1)
    return None
