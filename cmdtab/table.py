"""Command table construction.

The export region is a dense array of pointer-sized slots that starts at a
single marker symbol.  The builder filters the symbol table to the export
prefix, sorts by address and numbers entries by position.  Address order,
not declaration order, is what the runtime sees, so the sort is never
skipped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from cmdtab import wire_constants as wire_const
from cmdtab.descriptors import Signature
from cmdtab.errors import (
    DuplicateOffsetError,
    SymbolNotFoundError,
    TableLayoutError,
    UnsupportedTypeError,
)
from cmdtab.symbols import ExportedSymbol
from cmdtab.translate import assign_binding_names, tokenize_symbol, translate_symbol

LOGGER = logging.getLogger("cmdtab.table")

DEFAULT_PREFIX = wire_const.EXPORT.prefix
DEFAULT_MARKER = wire_const.EXPORT.marker
DEFAULT_RETURN_PREFIX = wire_const.EXPORT.return_prefix
DEFAULT_SLOT_WIDTH = 8
TABLE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class TableEntry:
    command_number: int
    symbol: ExportedSymbol
    signature: Optional[Signature] = None
    rejection: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.signature is not None

    @property
    def offset(self) -> int:
        return self.symbol.offset


@dataclass(frozen=True)
class CommandTable:
    """Immutable, address-ordered view of the export region."""

    entries: Tuple[TableEntry, ...]
    table_start: int
    slot_width: int = DEFAULT_SLOT_WIDTH
    prefix: str = DEFAULT_PREFIX
    marker: str = DEFAULT_MARKER
    _by_binding: Dict[str, Signature] = field(init=False, repr=False, compare=False, default_factory=dict)

    def __post_init__(self) -> None:
        if self.slot_width <= 0:
            raise TableLayoutError(f"slot width must be positive, got {self.slot_width}")
        for index, entry in enumerate(self.entries):
            if entry.command_number != index:
                raise TableLayoutError(f"entry {index} carries command number {entry.command_number}")
            expected = index * self.slot_width
            if entry.offset != expected:
                raise TableLayoutError(
                    f"entry {index} ({entry.symbol.name}) at offset 0x{entry.offset:X}, expected 0x{expected:X}"
                )
            if entry.signature is not None:
                self._by_binding[entry.signature.binding_name] = entry.signature

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[TableEntry]:
        return iter(self.entries)

    def __getitem__(self, command_number: int) -> TableEntry:
        return self.entries[command_number]

    @property
    def accepted(self) -> Tuple[Signature, ...]:
        return tuple(entry.signature for entry in self.entries if entry.signature is not None)

    @property
    def rejected(self) -> Tuple[TableEntry, ...]:
        return tuple(entry for entry in self.entries if entry.signature is None)

    def lookup(self, binding_name: str) -> Optional[Signature]:
        return self._by_binding.get(binding_name)

    # ------------------------------------------------------------------
    # Persistence

    def to_dict(self) -> Dict[str, Any]:
        entries: List[Dict[str, Any]] = []
        for entry in self.entries:
            item: Dict[str, Any] = {
                "command": entry.command_number,
                "address": entry.symbol.address,
                "offset": entry.offset,
                "type": entry.symbol.symbol_type,
                "symbol": entry.symbol.demangled,
                "mangled": entry.symbol.mangled,
            }
            if entry.signature is not None:
                item["signature"] = entry.signature.to_dict()
            if entry.rejection is not None:
                item["rejected"] = entry.rejection
            entries.append(item)
        return {
            "version": TABLE_FORMAT_VERSION,
            "table_start": self.table_start,
            "slot_width": self.slot_width,
            "prefix": self.prefix,
            "marker": self.marker,
            "entries": entries,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommandTable":
        version = int(data.get("version", TABLE_FORMAT_VERSION))
        if version != TABLE_FORMAT_VERSION:
            raise ValueError(f"unsupported table format version {version}")
        entries: List[TableEntry] = []
        for item in data.get("entries") or []:
            symbol = tokenize_symbol(
                ExportedSymbol(
                    address=int(item["address"]),
                    symbol_type=str(item.get("type", "T")),
                    demangled=str(item["symbol"]),
                    mangled=str(item.get("mangled", "")),
                    offset=int(item["offset"]),
                )
            )
            signature = None
            if item.get("signature") is not None:
                signature = replace(Signature.from_dict(item["signature"]), text=symbol.demangled)
            entries.append(
                TableEntry(
                    command_number=int(item["command"]),
                    symbol=symbol,
                    signature=signature,
                    rejection=item.get("rejected"),
                )
            )
        return cls(
            entries=tuple(entries),
            table_start=int(data["table_start"]),
            slot_width=int(data.get("slot_width", DEFAULT_SLOT_WIDTH)),
            prefix=str(data.get("prefix", DEFAULT_PREFIX)),
            marker=str(data.get("marker", DEFAULT_MARKER)),
        )


def find_marker(symbols: Iterable[ExportedSymbol], marker: str) -> ExportedSymbol:
    for symbol in symbols:
        if symbol.demangled == marker or symbol.name == marker:
            return symbol
    raise SymbolNotFoundError(marker)


def _parameter_text(symbol: ExportedSymbol) -> str:
    text = symbol.demangled
    return text[text.index("(") :]


def resolve_slot_signatures(
    symbols: Iterable[ExportedSymbol],
    *,
    prefix: str = DEFAULT_PREFIX,
    return_prefix: str = DEFAULT_RETURN_PREFIX,
) -> List[ExportedSymbol]:
    """Give bare slot symbols the signature of the function they point to.

    In a compiled artifact ``ex_add`` is a pointer variable with no
    parameter list.  The function ``add(int, int)`` supplies the parameters
    and the ``cmdtab_ret_add(int*)`` symbol emitted by the export macro
    supplies the return type.  Slots whose target is missing or overloaded
    are left alone and get rejected by the translator.
    """
    listing = list(symbols)
    functions: Dict[str, List[ExportedSymbol]] = {}
    for symbol in listing:
        if "(" in symbol.demangled:
            functions.setdefault(symbol.name, []).append(symbol)

    resolved: List[ExportedSymbol] = []
    for symbol in listing:
        if not symbol.demangled.startswith(prefix) or "(" in symbol.demangled:
            resolved.append(symbol)
            continue
        target = symbol.demangled[len(prefix) :]
        candidates = functions.get(target, [])
        if len(candidates) != 1:
            LOGGER.debug("slot %s: %d candidate targets for '%s'", symbol.demangled, len(candidates), target)
            resolved.append(symbol)
            continue
        text = symbol.demangled + _parameter_text(candidates[0])
        returns = functions.get(return_prefix + target, [])
        if len(returns) == 1:
            # the marker's single parameter is a pointer to the return type
            return_token = _parameter_text(returns[0])[1:-1].strip()
            if return_token.endswith("*"):
                text += " -> " + return_token[:-1].strip()
        else:
            LOGGER.warning("slot %s has no return type marker; assuming void", symbol.demangled)
        resolved.append(replace(symbol, demangled=text))
    return resolved


def build_table(
    symbols: Iterable[ExportedSymbol],
    *,
    prefix: str = DEFAULT_PREFIX,
    marker: str = DEFAULT_MARKER,
    slot_width: int = DEFAULT_SLOT_WIDTH,
) -> CommandTable:
    """Build the command table from a symbol listing.

    Layout problems (missing marker, shared or misaligned offsets) abort the
    build.  A symbol whose signature cannot be translated only loses its
    binding: it keeps its slot and command number so later entries do not
    shift.
    """
    if not prefix:
        raise ValueError("export prefix must not be empty")
    listing = resolve_slot_signatures(symbols, prefix=prefix)
    start = find_marker(listing, marker).address

    exported = [symbol for symbol in listing if symbol.demangled.startswith(prefix)]
    exported.sort(key=lambda symbol: (symbol.address, symbol.mangled))

    placed: List[ExportedSymbol] = []
    for index, symbol in enumerate(exported):
        if placed and placed[-1].address == symbol.address:
            raise DuplicateOffsetError(symbol.address - start, placed[-1].demangled, symbol.demangled)
        offset = symbol.address - start
        if offset < 0:
            raise TableLayoutError(f"'{symbol.demangled}' lies before marker '{marker}'")
        if offset % slot_width:
            raise TableLayoutError(f"'{symbol.demangled}' at offset 0x{offset:X} is not slot aligned")
        if offset != index * slot_width:
            raise TableLayoutError(
                f"export region has a gap before '{symbol.demangled}' (offset 0x{offset:X}, slot {index})"
            )
        placed.append(tokenize_symbol(symbol.at_offset(offset)))

    signatures: List[Signature] = []
    rejections: Dict[int, str] = {}
    for index, symbol in enumerate(placed):
        try:
            signatures.append(translate_symbol(symbol, index))
        except UnsupportedTypeError as exc:
            LOGGER.warning("rejected %s: %s", symbol.demangled, exc.reason)
            rejections[index] = exc.reason

    by_number = {sig.command_number: sig for sig in assign_binding_names(signatures, prefix)}
    entries = tuple(
        TableEntry(
            command_number=index,
            symbol=symbol,
            signature=by_number.get(index),
            rejection=rejections.get(index),
        )
        for index, symbol in enumerate(placed)
    )
    LOGGER.info(
        "built command table: %d entries, %d accepted, %d rejected",
        len(entries),
        len(by_number),
        len(rejections),
    )
    return CommandTable(
        entries=entries,
        table_start=start,
        slot_width=slot_width,
        prefix=prefix,
        marker=marker,
    )


def write_table(table: CommandTable, path: Union[str, Path]) -> Path:
    """Write the table as stable JSON (sorted keys, no timestamps)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(table.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return target


def load_table(path: Union[str, Path]) -> CommandTable:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return CommandTable.from_dict(data)


__all__ = [
    "CommandTable",
    "DEFAULT_MARKER",
    "DEFAULT_PREFIX",
    "DEFAULT_SLOT_WIDTH",
    "TableEntry",
    "build_table",
    "find_marker",
    "load_table",
    "resolve_slot_signatures",
    "write_table",
]
