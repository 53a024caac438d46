"""Tests for the cmdtab-gen and cmdtab-serve entry points."""

from __future__ import annotations

import json
import sys
import textwrap
from pathlib import Path

import pytest

from cmdtab import cli
from cmdtab.table import load_table, write_table


@pytest.fixture
def dump_file(tmp_path, demo_region):
    path = tmp_path / "app.sym"
    path.write_text("\n".join(demo_region.symbol_dump()) + "\n", encoding="utf-8")
    return path


def test_gen_writes_bindings_and_table(tmp_path, dump_file, capsys):
    out = tmp_path / "gen" / "app_stubs.py"
    table_json = tmp_path / "gen" / "app.table.json"
    rc = cli.gen_main([str(dump_file), "-o", str(out), "--table-json", str(table_json), "--log-level", "WARNING"])
    assert rc == 0
    err = capsys.readouterr().err
    assert "rejected: #6 ex_handle_info" in err
    assert "6 bindings, 1 rejected" in err
    assert "class CommandStubs" in out.read_text(encoding="utf-8")
    data = json.loads(table_json.read_text(encoding="utf-8"))
    assert len(data["entries"]) == 7
    assert load_table(table_json).lookup("add").command_number == 3


def test_gen_to_stdout(dump_file, capsys):
    assert cli.gen_main([str(dump_file), "--dump", "--log-level", "WARNING"]) == 0
    captured = capsys.readouterr()
    assert "def add(self, a, b):" in captured.out


def test_gen_reports_missing_marker(tmp_path, capsys):
    dump = tmp_path / "bad.sym"
    dump.write_text("0000000000001000 T ex_ping()\n", encoding="utf-8")
    assert cli.gen_main([str(dump), "--log-level", "WARNING"]) == 2
    assert "__start_cmdtab_export" in capsys.readouterr().err


def test_gen_prefix_override(tmp_path, capsys):
    dump = tmp_path / "app.sym"
    dump.write_text(
        "0000000000001000 D __start_cmdtab_export\n0000000000001000 T cmd_ping() -> string\n",
        encoding="utf-8",
    )
    assert cli.gen_main([str(dump), "--prefix", "cmd_", "--log-level", "WARNING"]) == 0
    assert "def ping(self):" in capsys.readouterr().out


def test_gen_list_prints_every_slot(dump_file, capsys):
    assert cli.gen_main([str(dump_file), "--list", "--log-level", "WARNING"]) == 0
    out = capsys.readouterr().out
    assert "class CommandStubs" not in out
    lines = out.splitlines()
    assert lines[0].startswith("|")
    assert "binding" in lines[0]
    assert len(lines) == 2 + 7
    assert "| add " in out
    assert "rejected: unsupported type 'handle_t'" in out


def test_gen_from_recorded_shared_object_dump(capsys):
    dump = Path(__file__).resolve().parent / "data" / "demo_exports.sym"
    assert cli.gen_main([str(dump), "--log-level", "WARNING"]) == 0
    captured = capsys.readouterr()
    assert "rejected:" not in captured.err
    for binding in ("def add(self, arg0, arg1):", "def half(self, arg0):", "def reset(self):", "def dirlist(self, arg0):"):
        assert binding in captured.out


def test_serve_loads_module_region(tmp_path, monkeypatch):
    module = tmp_path / "demo_exports.py"
    module.write_text(
        textwrap.dedent(
            """
            from cmdtab.exporter import ExportRegion

            REGION = ExportRegion()

            @REGION.export("add(a: int32, b: int32) -> int32")
            def add(a, b):
                return a + b
            """
        ),
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    args = cli.build_serve_parser().parse_args(["--module", "demo_exports"])
    table, registry = cli.load_server_table(args)
    assert len(table) == 1
    assert registry.invoke(0, [1, 2]) == 3

    write_table(table, tmp_path / "table.json")
    args = cli.build_serve_parser().parse_args(["--module", "demo_exports", "--table", str(tmp_path / "table.json")])
    table, _ = cli.load_server_table(args)
    assert table.lookup("add") is not None
    sys.modules.pop("demo_exports", None)


def test_serve_requires_table_for_library(capsys):
    assert cli.serve_main(["--library", "libdemo.so", "--log-level", "WARNING"]) == 2
    assert "--library requires --table" in capsys.readouterr().err
