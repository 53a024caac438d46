"""Indexed function registries.

This is the only module that turns a command number into an address.
Every access is bounds-checked first, so no address past the last slot is
ever computed.  Two slot sources exist:

* :class:`CallableRegistry` - slots hold Python callables (see
  :mod:`cmdtab.exporter`).
* :class:`NativeRegistry` - slots hold C function pointers in process
  memory; calls are marshalled through ``ctypes`` using the build-time
  signature.
"""

from __future__ import annotations

import ctypes
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from cmdtab.descriptors import Signature, TypeDescriptor, TypeKind
from cmdtab.errors import OutOfRangeError, UnsupportedTypeError

LOGGER = logging.getLogger("cmdtab.registry")


class FunctionRegistry:
    """Bounds-checked ``index -> slot`` resolution shared by all slot sources."""

    def __init__(self, table_start: int, slot_width: int, length: int) -> None:
        if slot_width <= 0:
            raise ValueError("slot width must be positive")
        self.table_start = int(table_start)
        self.slot_width = int(slot_width)
        self._length = int(length)

    def __len__(self) -> int:
        return self._length

    def check_index(self, index: int) -> int:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < self._length:
            raise OutOfRangeError(index, self._length)
        return index

    def address_of(self, index: int) -> int:
        """Address of slot ``index``; only computed for in-range indices."""
        self.check_index(index)
        return self.table_start + index * self.slot_width

    def invoke(self, index: int, args: Sequence[Any]) -> Any:
        return self._call(self.address_of(index), index, args)

    def _call(self, address: int, index: int, args: Sequence[Any]) -> Any:
        raise NotImplementedError


class CallableRegistry(FunctionRegistry):
    """Slots backed by Python callables keyed by their region address."""

    def __init__(self, slots: Mapping[int, Callable[..., Any]], table_start: int, slot_width: int) -> None:
        super().__init__(table_start, slot_width, len(slots))
        self._slots: Dict[int, Callable[..., Any]] = dict(slots)
        for index in range(len(self)):
            if self.address_of(index) not in self._slots:
                raise ValueError(f"slot {index} at 0x{self.address_of(index):X} is empty")

    @classmethod
    def from_functions(
        cls, functions: Sequence[Callable[..., Any]], table_start: int = 0, slot_width: int = 8
    ) -> "CallableRegistry":
        slots = {table_start + index * slot_width: fn for index, fn in enumerate(functions)}
        return cls(slots, table_start, slot_width)

    def _call(self, address: int, index: int, args: Sequence[Any]) -> Any:
        return self._slots[address](*args)


_CTYPE_INTS = {
    (1, True): ctypes.c_int8,
    (2, True): ctypes.c_int16,
    (4, True): ctypes.c_int32,
    (8, True): ctypes.c_int64,
    (1, False): ctypes.c_uint8,
    (2, False): ctypes.c_uint16,
    (4, False): ctypes.c_uint32,
    (8, False): ctypes.c_uint64,
}


def ctype_for(desc: TypeDescriptor) -> Any:
    """C calling-convention type for ``desc``; containers have none."""
    if desc.kind is TypeKind.INT:
        return _CTYPE_INTS[(desc.width, desc.signed)]
    if desc.kind is TypeKind.FLOAT:
        return ctypes.c_float if desc.width == 4 else ctypes.c_double
    if desc.kind is TypeKind.BOOL:
        return ctypes.c_bool
    if desc.kind is TypeKind.STRING:
        return ctypes.c_char_p
    if desc.kind is TypeKind.VOID:
        return None
    raise UnsupportedTypeError(desc.describe(), reason=f"{desc.describe()} has no C calling convention")


class NativeRegistry(FunctionRegistry):
    """Slots holding native function pointers at ``table_start``.

    ``signatures`` is indexed by command number; entries without a signature
    (rejected at build time) stay in the table but cannot be invoked.
    """

    def __init__(self, signatures: Sequence[Optional[Signature]], table_start: int, slot_width: int = 0) -> None:
        width = slot_width or ctypes.sizeof(ctypes.c_void_p)
        super().__init__(table_start, width, len(signatures))
        self._prototypes: List[Optional[Any]] = []
        self._unsupported: Dict[int, str] = {}
        for index, sig in enumerate(signatures):
            if sig is None:
                self._prototypes.append(None)
                self._unsupported[index] = "no accepted signature"
                continue
            try:
                restype = ctype_for(sig.returns)
                argtypes = [ctype_for(desc) for desc in sig.params]
            except UnsupportedTypeError as exc:
                LOGGER.warning("command %d (%s) is not callable natively: %s", index, sig.name, exc.reason)
                self._prototypes.append(None)
                self._unsupported[index] = exc.reason
                continue
            self._prototypes.append(ctypes.CFUNCTYPE(restype, *argtypes))

    @classmethod
    def from_table(cls, table: Any, table_start: Optional[int] = None, *, load_bias: int = 0) -> "NativeRegistry":
        """Registry over a built :class:`~cmdtab.table.CommandTable`.

        ``table_start`` overrides the link-time marker address; otherwise the
        marker address plus ``load_bias`` is used.
        """
        start = table.table_start + load_bias if table_start is None else table_start
        return cls([entry.signature for entry in table], start, table.slot_width)

    @classmethod
    def from_library(cls, library: ctypes.CDLL, table: Any) -> "NativeRegistry":
        """Locate the region through the start marker exported by ``library``."""
        marker = ctypes.c_void_p.in_dll(library, table.marker)
        return cls.from_table(table, ctypes.addressof(marker))

    def _call(self, address: int, index: int, args: Sequence[Any]) -> Any:
        prototype = self._prototypes[index]
        if prototype is None:
            raise UnsupportedTypeError(f"#{index}", reason=self._unsupported.get(index, "unsupported"))
        pointer = ctypes.c_void_p.from_address(address).value
        if not pointer:
            raise ValueError(f"slot {index} at 0x{address:X} holds a null pointer")
        function = prototype(pointer)
        marshalled = [arg.encode("utf-8") if isinstance(arg, str) else arg for arg in args]
        result = function(*marshalled)
        if isinstance(result, bytes):
            return result.decode("utf-8")
        return result


__all__ = ["CallableRegistry", "FunctionRegistry", "NativeRegistry", "ctype_for"]
