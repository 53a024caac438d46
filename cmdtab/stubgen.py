"""Caller-side binding generator.

Output is a self-contained Python module with one method per accepted
signature.  Descriptors are emitted as literal constructor calls and codec
routines are chosen here, so the generated code never inspects types at
call time.  The text depends only on the accepted table: no timestamps,
no paths, stable ordering.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from tabulate import tabulate

from cmdtab.descriptors import Signature, TypeDescriptor
from cmdtab.table import CommandTable

GENERATED_HEADER = "# Generated by cmdtab-gen from the command table. Do not edit."


def _py_string(text: str) -> str:
    return repr(text)


class _TypePool:
    """Assigns module-level names to descriptors in first-use order."""

    def __init__(self) -> None:
        self._names: Dict[TypeDescriptor, str] = {}
        self._order: List[TypeDescriptor] = []

    def name_for(self, desc: TypeDescriptor) -> str:
        name = self._names.get(desc)
        if name is None:
            name = f"_T{len(self._order)}"
            self._names[desc] = name
            self._order.append(desc)
        return name

    def lines(self) -> List[str]:
        return [f"{self._names[desc]} = {desc.to_source()}  # {desc.describe()}" for desc in self._order]


# names the generated module binds at top level, plus the method receiver
_RESERVED_PARAMS = frozenset(
    {
        "self",
        "encode_value",
        "decode_value",
        "DEFAULT_WIRE",
        "BOOL",
        "STRING",
        "VOID",
        "array_of",
        "float_type",
        "int_type",
        "sequence_of",
        "TABLE_LENGTH",
        "COMMANDS",
        "REJECTED",
        "CommandStubs",
    }
)
_POOL_NAME_RE = re.compile(r"^_T\d+$")


def _safe_params(names: List[str]) -> List[str]:
    safe: List[str] = []
    for name in names:
        reserved = name in _RESERVED_PARAMS or _POOL_NAME_RE.match(name)
        base = f"{name}_" if reserved else name
        candidate, suffix = base, 1
        while candidate in safe:
            candidate = f"{base}_{suffix}"
            suffix += 1
        safe.append(candidate)
    return safe


def _method_lines(sig: Signature, pool: _TypePool) -> List[str]:
    params = _safe_params(list(sig.param_names))
    ret_name = pool.name_for(sig.returns)
    arg_list = "".join(f", {name}" for name in params)
    lines = [
        f"    def {sig.binding_name}(self{arg_list}):",
        f"        \"\"\"{sig.describe()}  [command {sig.command_number}]\"\"\"",
    ]
    if params:
        lines.append("        payloads = (")
        for name, desc in zip(params, sig.params):
            lines.append(f"            encode_value({pool.name_for(desc)}, {name}, self._wire),")
        lines.append("        )")
    else:
        lines.append("        payloads = ()")
    lines.append(f"        data = self._channel.call({sig.command_number}, payloads)")
    lines.append(f"        return decode_value({ret_name}, data, self._wire)")
    return lines


def generate_stubs(table: CommandTable, *, module_doc: Optional[str] = None) -> str:
    """Render the bindings module for ``table``."""
    accepted = sorted(table.accepted, key=lambda sig: sig.command_number)
    pool = _TypePool()
    methods: List[List[str]] = [_method_lines(sig, pool) for sig in accepted]

    doc = module_doc or f"Bindings for {len(accepted)} exported commands (prefix {table.prefix!r})."
    out: List[str] = [
        GENERATED_HEADER,
        f'"""{doc}"""',
        "",
        "from cmdtab.codec import DEFAULT_WIRE, decode_value, encode_value",
        "from cmdtab.descriptors import BOOL, STRING, VOID, array_of, float_type, int_type, sequence_of",
        "",
        f"TABLE_LENGTH = {len(table)}",
        "",
    ]
    out.extend(pool.lines())
    out.append("")
    out.append("COMMANDS = {")
    for sig in accepted:
        out.append(f"    {_py_string(sig.binding_name)}: {sig.command_number},")
    out.append("}")
    out.append("")
    out.append("# (command number, symbol, reason)")
    out.append("REJECTED = (")
    for entry in table.rejected:
        out.append(
            f"    ({entry.command_number}, {_py_string(entry.symbol.demangled)}, {_py_string(entry.rejection or '')}),"
        )
    out.append(")")
    out.append("")
    out.append("")
    out.append("class CommandStubs:")
    out.append('    """Remote bindings; ``channel`` must provide ``call(command_number, payloads)``."""')
    out.append("")
    out.append("    def __init__(self, channel):")
    out.append("        self._channel = channel")
    out.append('        self._wire = getattr(channel, "wire", DEFAULT_WIRE)')
    for lines in methods:
        out.append("")
        out.extend(lines)
    out.append("")
    out.append("")
    out.append('__all__ = ["COMMANDS", "CommandStubs", "REJECTED", "TABLE_LENGTH"]')
    return "\n".join(out) + "\n"


def table_listing(table: CommandTable) -> str:
    """Markdown table of every slot, accepted or not."""
    rows = []
    for entry in table:
        sig = entry.signature
        rows.append(
            [
                entry.command_number,
                f"0x{entry.offset:X}",
                entry.symbol.name,
                sig.binding_name if sig is not None else "-",
                sig.describe() if sig is not None else f"rejected: {entry.rejection}",
            ]
        )
    return tabulate(rows, headers=["#", "offset", "symbol", "binding", "signature"], tablefmt="github")


def rejection_report(table: CommandTable) -> List[str]:
    """One line per excluded symbol, for the generator diagnostics."""
    return [
        f"rejected: #{entry.command_number} {entry.symbol.demangled}: {entry.rejection}"
        for entry in table.rejected
    ]


__all__ = ["GENERATED_HEADER", "generate_stubs", "rejection_report", "table_listing"]
