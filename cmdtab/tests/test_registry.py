"""Indexed function registry tests."""

from __future__ import annotations

import ctypes

import pytest

from cmdtab.descriptors import BOOL, STRING, Signature, float_type, int_type, sequence_of
from cmdtab.errors import OutOfRangeError, UnsupportedTypeError
from cmdtab.registry import CallableRegistry, NativeRegistry, ctype_for


def test_callable_registry_bounds():
    calls = []
    registry = CallableRegistry.from_functions([lambda: calls.append(0) or 0, lambda x: x + 1], table_start=0x100)
    assert len(registry) == 2
    assert registry.address_of(1) == 0x108
    assert registry.invoke(1, [41]) == 42
    for bad in (2, -1, True, "0"):
        with pytest.raises(OutOfRangeError):
            registry.invoke(bad, [])
    assert calls == []


def test_callable_registry_requires_dense_slots():
    with pytest.raises(ValueError):
        CallableRegistry({0x100: print, 0x110: print}, 0x100, 8)


def test_ctype_mapping():
    assert ctype_for(int_type(2, signed=False)) is ctypes.c_uint16
    assert ctype_for(float_type(4)) is ctypes.c_float
    assert ctype_for(STRING) is ctypes.c_char_p
    with pytest.raises(UnsupportedTypeError):
        ctype_for(sequence_of(int_type(4)))


ADD = ctypes.CFUNCTYPE(ctypes.c_int32, ctypes.c_int32, ctypes.c_int32)
LENGTH = ctypes.CFUNCTYPE(ctypes.c_int64, ctypes.c_char_p)
HALF = ctypes.CFUNCTYPE(ctypes.c_double, ctypes.c_double, ctypes.c_bool)


@pytest.fixture
def native_region():
    """A pointer array holding ctypes callbacks, laid out like an export region."""
    callbacks = [
        ADD(lambda a, b: a + b),
        LENGTH(lambda text: len(text)),
        HALF(lambda value, enabled: value / 2 if enabled else value),
    ]
    pointers = [ctypes.cast(cb, ctypes.c_void_p).value for cb in callbacks]
    slots = (ctypes.c_void_p * 4)(*pointers, None)
    signatures = [
        Signature("ex_add", int_type(4), (int_type(4), int_type(4)), ("a", "b"), command_number=0),
        Signature("ex_length", int_type(8), (STRING,), ("text",), command_number=1),
        Signature("ex_half", float_type(8), (float_type(8), BOOL), ("value", "enabled"), command_number=2),
        Signature("ex_list", int_type(4), (sequence_of(int_type(4)),), ("items",), command_number=3),
    ]
    # keep callbacks alive for the duration of the test
    return NativeRegistry(signatures, ctypes.addressof(slots)), (callbacks, slots)


def test_native_registry_invokes_function_pointers(native_region):
    registry, _keepalive = native_region
    assert registry.slot_width == ctypes.sizeof(ctypes.c_void_p)
    assert registry.invoke(0, [2, 3]) == 5
    assert registry.invoke(1, ["héllo"]) == len("héllo".encode("utf-8"))
    assert registry.invoke(2, [5.0, True]) == 2.5
    assert registry.invoke(2, [5.0, False]) == 5.0


def test_native_registry_unsupported_and_out_of_range(native_region):
    registry, _keepalive = native_region
    with pytest.raises(UnsupportedTypeError):
        registry.invoke(3, [[1, 2]])
    with pytest.raises(OutOfRangeError):
        registry.invoke(4, [])


def test_native_registry_from_table_uses_marker_and_bias(demo_table):
    registry = NativeRegistry.from_table(demo_table, load_bias=0x10)
    assert registry.table_start == demo_table.table_start + 0x10
    assert registry.slot_width == demo_table.slot_width
    assert len(registry) == len(demo_table)
