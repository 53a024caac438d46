"""The cmdtab wire convention, read from ``cmdtab_wire.h``.

The generator, the dispatch runtime and the C side of an export region all
take widths, byte order, status codes and export naming from the one header,
so the sides cannot drift apart.  Every value the Python side relies on must
be defined there; a missing or malformed macro fails the import.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

_HEADER_PATH = Path(__file__).resolve().parent / "include" / "cmdtab_wire.h"

_DEFINE_RE = re.compile(
    r"""^\#define\s+CMDTAB_(?P<group>WIRE|STATUS|EXPORT)_(?P<key>\w+)\s+
        (?:"(?P<text>[^"]*)"|(?P<number>0[xX][0-9a-fA-F]+|\d+)[uUlL]*)
        \s*(?:/\*.*?\*/\s*|//.*)?$""",
    re.VERBOSE,
)

_WIRE_KEYS = {
    "BYTE_ORDER": str,
    "COMMAND_WIDTH": int,
    "ARG_COUNT_WIDTH": int,
    "SIZE_WIDTH": int,
    "ERROR_CODE_WIDTH": int,
    "ERROR_SENTINEL": int,
}
_EXPORT_KEYS = ("PREFIX", "SECTION", "MARKER", "RETURN_PREFIX")
_STATUS_KEYS = ("OK", "EINVAL", "ERANGE", "ETRUNC", "ETIMEDOUT", "EUNSUPPORTED", "EAPP")


@dataclass(frozen=True)
class WireDefaults:
    byte_order: str
    command_width: int
    arg_count_width: int
    size_width: int
    error_code_width: int
    error_sentinel: int


@dataclass(frozen=True)
class ExportNaming:
    prefix: str
    section: str
    marker: str
    return_prefix: str


@dataclass(frozen=True)
class WireHeader:
    wire: WireDefaults
    export: ExportNaming
    status: Dict[str, int]


def parse_wire_header(text: str, source: str = "<header>") -> WireHeader:
    """Parse header text; raise ValueError naming every missing or mistyped macro."""
    groups: Dict[str, Dict[str, Union[int, str]]] = {"WIRE": {}, "STATUS": {}, "EXPORT": {}}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.startswith("#define CMDTAB_") or len(stripped.split()) < 3:
            # include guards carry no value
            continue
        match = _DEFINE_RE.match(stripped)
        if match is None:
            raise ValueError(f"{source}: unsupported macro: {stripped}")
        number = match.group("number")
        value: Union[int, str] = int(number, 0) if number is not None else match.group("text")
        groups[match.group("group")][match.group("key")] = value

    problems = []
    expected = [("WIRE", key, kind) for key, kind in _WIRE_KEYS.items()]
    expected += [("EXPORT", key, str) for key in _EXPORT_KEYS]
    expected += [("STATUS", key, int) for key in _STATUS_KEYS]
    for group, key, kind in expected:
        value = groups[group].get(key)
        if value is None:
            problems.append(f"CMDTAB_{group}_{key} is not defined")
        elif not isinstance(value, kind):
            problems.append(f"CMDTAB_{group}_{key} must be a {'string' if kind is str else 'number'}")
    if problems:
        raise ValueError(f"{source}: " + "; ".join(problems))

    wire = groups["WIRE"]
    export = groups["EXPORT"]
    return WireHeader(
        wire=WireDefaults(
            byte_order=str(wire["BYTE_ORDER"]),
            command_width=int(wire["COMMAND_WIDTH"]),
            arg_count_width=int(wire["ARG_COUNT_WIDTH"]),
            size_width=int(wire["SIZE_WIDTH"]),
            error_code_width=int(wire["ERROR_CODE_WIDTH"]),
            error_sentinel=int(wire["ERROR_SENTINEL"]),
        ),
        export=ExportNaming(
            prefix=str(export["PREFIX"]),
            section=str(export["SECTION"]),
            marker=str(export["MARKER"]),
            return_prefix=str(export["RETURN_PREFIX"]),
        ),
        status={key: int(value) for key, value in groups["STATUS"].items()},
    )


def load_wire_header(path: Optional[Union[str, Path]] = None) -> WireHeader:
    header = Path(path) if path is not None else _HEADER_PATH
    if not header.exists():
        raise FileNotFoundError(f"missing wire header: {header}")
    return parse_wire_header(header.read_text(encoding="utf-8"), str(header))


def header_path() -> Path:
    """Return the path to the authoritative header file."""
    return _HEADER_PATH


HEADER = load_wire_header()
WIRE = HEADER.wire
EXPORT = HEADER.export

Status = enum.IntEnum("Status", HEADER.status, module=__name__)
Status.__doc__ = "Wire status codes carried by error response frames."


def status_name(code: int) -> str:
    try:
        return Status(code).name
    except ValueError:
        return f"0x{code:04X}"


__all__ = [
    "EXPORT",
    "ExportNaming",
    "HEADER",
    "Status",
    "WIRE",
    "WireDefaults",
    "WireHeader",
    "header_path",
    "load_wire_header",
    "parse_wire_header",
    "status_name",
]
