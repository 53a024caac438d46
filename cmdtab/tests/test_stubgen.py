"""Stub generator tests."""

from __future__ import annotations

import random

import pytest

from cmdtab.client import LoopbackChannel
from cmdtab.dispatch import DispatchEngine
from cmdtab.errors import RemoteError
from cmdtab.exporter import ExportRegion
from cmdtab.stubgen import GENERATED_HEADER, generate_stubs, rejection_report
from cmdtab.table import build_table


def _load_module(source: str):
    namespace = {"__name__": "cmdtab_generated"}
    exec(compile(source, "<generated>", "exec"), namespace)
    return namespace


def test_generated_module_shape(demo_table):
    source = generate_stubs(demo_table)
    assert source.startswith(GENERATED_HEADER)
    module = _load_module(source)
    assert module["TABLE_LENGTH"] == 7
    assert module["COMMANDS"] == {
        "ping": 0,
        "twice": 1,
        "mean": 2,
        "add": 3,
        "fail": 4,
        "dirlist": 5,
    }
    assert [item[0] for item in module["REJECTED"]] == [6]
    assert not hasattr(module["CommandStubs"], "handle_info")


def test_generated_bindings_round_trip(demo_engine, demo_table):
    module = _load_module(generate_stubs(demo_table))
    stubs = module["CommandStubs"](LoopbackChannel(demo_engine))
    assert stubs.add(2, 3) == 5
    assert stubs.dirlist("/srv") == ["a.txt", "b.txt", "notes"]
    assert stubs.dirlist("/empty") == []
    assert stubs.mean([1.0, 2.0, 3.0]) == 2.0
    assert stubs.ping() == "pong"
    with pytest.raises(RemoteError):
        stubs.fail(1)


def test_output_is_deterministic(demo_region):
    symbols = demo_region.symbols()
    shuffled = list(symbols)
    random.Random(3).shuffle(shuffled)
    assert generate_stubs(build_table(shuffled)) == generate_stubs(build_table(symbols))


def test_parameter_names_are_made_safe():
    region = ExportRegion()
    region.add(lambda a, b: a - b, "sub(self: int32, self: int32) -> int32")
    region.add(lambda: None, "noop()")
    source = generate_stubs(region.build_table())
    assert "def sub(self, self_, self__1):" in source
    assert "def noop(self):" in source
    module = _load_module(source)
    assert module["COMMANDS"] == {"sub": 0, "noop": 1}


def test_names_used_by_the_generated_module_are_not_shadowed():
    region = ExportRegion()
    region.add(lambda x: x + 1, "inc(encode_value: int32) -> int32")
    region.add(lambda a, b: a * b, "mul(_T0: int32, DEFAULT_WIRE: int32) -> int32")
    region.add(lambda: 7, "__init__() -> int32")
    region.add(lambda: 8, "_wire() -> int32")
    table = region.build_table()
    source = generate_stubs(table)
    assert "def inc(self, encode_value_):" in source
    assert "def mul(self, _T0_, DEFAULT_WIRE_):" in source
    module = _load_module(source)
    assert module["COMMANDS"] == {"inc": 0, "mul": 1, "cmd__init__": 2, "cmd_wire": 3}
    stubs = module["CommandStubs"](LoopbackChannel(DispatchEngine(table, region.registry())))
    assert stubs.inc(41) == 42
    assert stubs.mul(6, 7) == 42
    assert stubs.cmd__init__() == 7
    assert stubs.cmd_wire() == 8


def test_rejection_report(demo_table):
    assert rejection_report(demo_table) == [
        "rejected: #6 ex_handle_info(h: handle_t) -> int32: unsupported type 'handle_t'"
    ]
