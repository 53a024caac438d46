"""Symbol table input for the table builder.

Symbols arrive either as a pre-extracted dump (``address type signature``
per line, the shape ``nm -C`` prints) or straight from a compiled artifact,
in which case ``nm`` is run twice so every entry keeps both its demangled
signature and its raw mangled name.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from cmdtab.errors import SymbolExtractionError

LOGGER = logging.getLogger("cmdtab.symbols")

DEFAULT_NM = "nm"


@dataclass(frozen=True)
class ExportedSymbol:
    """One symbol table line, plus the type tokens split out of its signature."""

    address: int
    symbol_type: str
    demangled: str
    mangled: str = ""
    offset: int = -1
    return_token: Optional[str] = None
    param_tokens: Tuple[str, ...] = ()
    param_names: Tuple[Optional[str], ...] = field(default=(), compare=False)

    @property
    def name(self) -> str:
        """Bare function name (signature text up to the parameter list)."""
        head = self.demangled.split("(", 1)[0]
        return head.strip()

    def at_offset(self, offset: int) -> "ExportedSymbol":
        return ExportedSymbol(
            address=self.address,
            symbol_type=self.symbol_type,
            demangled=self.demangled,
            mangled=self.mangled,
            offset=offset,
            return_token=self.return_token,
            param_tokens=self.param_tokens,
            param_names=self.param_names,
        )


def parse_dump_line(line: str) -> Optional[ExportedSymbol]:
    """Parse ``address type signature``; return None for lines that are not symbols."""
    stripped = line.strip()
    if not stripped:
        return None
    parts = stripped.split(None, 2)
    if len(parts) < 3:
        # Undefined symbols ("U name") carry no address.
        return None
    address_text, symbol_type, signature = parts
    try:
        address = int(address_text, 16)
    except ValueError:
        return None
    if len(symbol_type) != 1:
        return None
    signature = signature.strip()
    return ExportedSymbol(address=address, symbol_type=symbol_type, demangled=signature, mangled=signature)


def read_symbol_dump(source: Union[str, Path, Iterable[str]]) -> List[ExportedSymbol]:
    """Read a symbol dump from a path or from an iterable of lines."""
    if isinstance(source, (str, Path)):
        lines: Iterable[str] = Path(source).read_text(encoding="utf-8").splitlines()
    else:
        lines = source
    symbols: List[ExportedSymbol] = []
    for line in lines:
        symbol = parse_dump_line(line)
        if symbol is not None:
            symbols.append(symbol)
    return symbols


def _nm_binary() -> str:
    return os.environ.get("CMDTAB_NM", DEFAULT_NM)


def _run_nm(args: Sequence[str]) -> List[str]:
    cmd = [_nm_binary(), *args]
    LOGGER.debug("running %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise SymbolExtractionError(f"symbol tool not found: {cmd[0]}") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise SymbolExtractionError(f"{' '.join(cmd)} failed: {stderr or exc.returncode}") from exc
    return result.stdout.splitlines()


def extract_symbols(artifact: Union[str, Path]) -> List[ExportedSymbol]:
    """Read defined symbols from a compiled artifact using ``nm``.

    ``nm`` emits the same symbol order with and without ``-C``, so the raw and
    demangled listings are paired line by line.
    """
    path = Path(artifact)
    if not path.exists():
        raise SymbolExtractionError(f"artifact not found: {path}")
    raw_lines = [line for line in _run_nm(["--defined-only", str(path)]) if line.strip()]
    demangled_lines = [line for line in _run_nm(["-C", "--defined-only", str(path)]) if line.strip()]
    if len(raw_lines) != len(demangled_lines):
        raise SymbolExtractionError(
            f"nm listings disagree for {path}: {len(raw_lines)} raw vs {len(demangled_lines)} demangled"
        )
    symbols: List[ExportedSymbol] = []
    for raw_line, demangled_line in zip(raw_lines, demangled_lines):
        demangled = parse_dump_line(demangled_line)
        raw = parse_dump_line(raw_line)
        if demangled is None or raw is None:
            continue
        if raw.address != demangled.address:
            raise SymbolExtractionError(
                f"nm listings out of step at 0x{raw.address:X} / 0x{demangled.address:X}"
            )
        symbols.append(
            ExportedSymbol(
                address=demangled.address,
                symbol_type=demangled.symbol_type,
                demangled=demangled.demangled,
                mangled=raw.demangled,
            )
        )
    LOGGER.info("read %d symbols from %s", len(symbols), path)
    return symbols


def load_symbols(source: Union[str, Path], *, dump: Optional[bool] = None) -> List[ExportedSymbol]:
    """Load symbols from a dump file or a compiled artifact.

    When ``dump`` is None the choice is made from the file contents: text
    files are treated as dumps, anything that fails to decode as an artifact.
    """
    path = Path(source)
    if dump is None:
        try:
            path.read_bytes().decode("utf-8")
            dump = True
        except UnicodeDecodeError:
            dump = False
    if dump:
        return read_symbol_dump(path)
    return extract_symbols(path)


__all__ = [
    "ExportedSymbol",
    "extract_symbols",
    "load_symbols",
    "parse_dump_line",
    "read_symbol_dump",
]
