"""
Pytest fixtures for cmdtab tests.
"""
from __future__ import annotations

from typing import Dict, List

import pytest

from cmdtab.dispatch import DispatchEngine
from cmdtab.exporter import ExportRegion


class CallLog:
    """Records which exported functions ran."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def record(self, name: str) -> None:
        self.calls.append(name)


def build_demo_region(log: CallLog) -> ExportRegion:
    """Seven exports; slot 3 is ``add`` and slot 6 cannot be translated."""
    region = ExportRegion(base=0x1129)
    listings: Dict[str, List[str]] = {"/srv": ["a.txt", "b.txt", "notes"]}

    def ping():
        log.record("ping")
        return "pong"

    def twice(x):
        log.record("twice")
        return x * 2

    def mean(values):
        log.record("mean")
        return sum(values) / len(values)

    def add(a, b):
        log.record("add")
        return a + b

    def fail(code):
        log.record("fail")
        raise RuntimeError(f"device busy ({code})")

    def dirlist(path):
        log.record("dirlist")
        return listings.get(path, [])

    def handle_info(handle):
        log.record("handle_info")
        return 0

    region.add(ping, "ping() -> string")
    region.add(twice, "twice(x: int32) -> int32")
    region.add(mean, "mean(values: sequence<float64>) -> float64")
    region.add(add, "add(a: integer, b: integer) -> integer")
    region.add(fail, "fail(code: int32) -> int32")
    region.add(dirlist, "dirlist(path: string) -> sequence<string>")
    region.add(handle_info, "handle_info(h: handle_t) -> int32")
    return region


@pytest.fixture
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture
def demo_region(call_log: CallLog) -> ExportRegion:
    return build_demo_region(call_log)


@pytest.fixture
def demo_table(demo_region: ExportRegion):
    return demo_region.build_table()


@pytest.fixture
def demo_engine(demo_region: ExportRegion, demo_table) -> DispatchEngine:
    return DispatchEngine(demo_table, demo_region.registry())
