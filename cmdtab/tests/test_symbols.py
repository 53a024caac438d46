"""Symbol exporter and symbol dump tests."""

from __future__ import annotations

import os
import stat

import pytest

from cmdtab.errors import SymbolExtractionError
from cmdtab.symbols import extract_symbols, load_symbols, parse_dump_line, read_symbol_dump

FAKE_NM = """#!/bin/sh
if [ "$1" = "-C" ]; then
  echo "0000000000004000 D __start_cmdtab_export"
  echo "0000000000004000 T ex_add(int, int)"
  echo "0000000000004008 T ex_name()"
else
  echo "0000000000004000 D __start_cmdtab_export"
  echo "0000000000004000 T _Z6ex_addii"
  echo "0000000000004008 T _Z7ex_namev"
fi
"""


@pytest.fixture
def fake_nm(tmp_path, monkeypatch):
    script = tmp_path / "fake-nm"
    script.write_text(FAKE_NM, encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    monkeypatch.setenv("CMDTAB_NM", str(script))
    return script


def test_parse_dump_line_fields():
    symbol = parse_dump_line("0000000001129 T ex_dirlist(path: string) -> sequence<string>")
    assert symbol is not None
    assert symbol.address == 0x1129
    assert symbol.symbol_type == "T"
    assert symbol.demangled == "ex_dirlist(path: string) -> sequence<string>"
    assert symbol.name == "ex_dirlist"


@pytest.mark.parametrize("line", ["", "                 U printf", "not-hex T ex_x()", "0000 TT ex_x()"])
def test_parse_dump_line_skips_non_symbols(line):
    assert parse_dump_line(line) is None


def test_read_symbol_dump_from_file(tmp_path):
    dump = tmp_path / "app.sym"
    dump.write_text("0000000000001000 D __start_cmdtab_export\n\n0000000000001000 T ex_ping()\n", encoding="utf-8")
    symbols = read_symbol_dump(dump)
    assert [symbol.demangled for symbol in symbols] == ["__start_cmdtab_export", "ex_ping()"]


def test_extract_symbols_pairs_raw_and_demangled(tmp_path, fake_nm):
    artifact = tmp_path / "app.elf"
    artifact.write_bytes(b"\x7fELF\x02\x01\x01\x00\xff\xfe")
    symbols = extract_symbols(artifact)
    assert [(s.address, s.demangled, s.mangled) for s in symbols[1:]] == [
        (0x4000, "ex_add(int, int)", "_Z6ex_addii"),
        (0x4008, "ex_name()", "_Z7ex_namev"),
    ]
    # binary content is routed to nm automatically
    assert load_symbols(artifact) == symbols


def test_missing_nm_is_reported(tmp_path, monkeypatch):
    artifact = tmp_path / "app.elf"
    artifact.write_bytes(b"\x7fELF\xff")
    monkeypatch.setenv("CMDTAB_NM", os.fspath(tmp_path / "no-such-nm"))
    with pytest.raises(SymbolExtractionError):
        extract_symbols(artifact)


def test_missing_artifact_is_reported(tmp_path):
    with pytest.raises(SymbolExtractionError):
        extract_symbols(tmp_path / "missing.elf")
