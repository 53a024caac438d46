"""Python-hosted export region.

Mirrors what ``CMDTAB_EXPORT`` does for a C program: each exported function
takes one slot in a contiguous region that starts at a marker symbol.  The
region can render itself as a symbol dump, so the same table builder and
stub generator run over it as over ``nm`` output from a real binary.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from cmdtab.registry import CallableRegistry
from cmdtab.symbols import ExportedSymbol, read_symbol_dump
from cmdtab.table import (
    DEFAULT_MARKER,
    DEFAULT_PREFIX,
    DEFAULT_SLOT_WIDTH,
    CommandTable,
    build_table,
)

LOGGER = logging.getLogger("cmdtab.exporter")

DEFAULT_BASE = 0x1000


class ExportRegion:
    """Contiguous region of exported functions, one slot per export."""

    def __init__(
        self,
        *,
        prefix: str = DEFAULT_PREFIX,
        base: int = DEFAULT_BASE,
        slot_width: int = DEFAULT_SLOT_WIDTH,
        marker: str = DEFAULT_MARKER,
    ) -> None:
        if slot_width <= 0:
            raise ValueError("slot width must be positive")
        self.prefix = prefix
        self.base = int(base)
        self.slot_width = int(slot_width)
        self.marker = marker
        self._slots: Dict[int, Callable[..., Any]] = {}
        self._declarations: Dict[int, str] = {}
        self._order: List[int] = []

    def __len__(self) -> int:
        return len(self._slots)

    def _next_free_slot(self) -> int:
        slot = 0
        while slot in self._slots:
            slot += 1
        return slot

    def add(self, fn: Callable[..., Any], declaration: str, *, slot: Optional[int] = None) -> int:
        """Export ``fn`` under ``declaration`` and return its slot index.

        ``slot`` pins the function to a position, the way a linker may place
        exports in an order unrelated to their declarations.
        """
        text = declaration.strip()
        if not text.startswith(self.prefix):
            text = f"{self.prefix}{text}"
        if text in self._declarations.values():
            raise ValueError(f"'{text}' is already exported")
        index = self._next_free_slot() if slot is None else int(slot)
        if index < 0:
            raise ValueError("slot index must be non-negative")
        if index in self._slots:
            raise ValueError(f"slot {index} already holds '{self._declarations[index]}'")
        self._slots[index] = fn
        self._declarations[index] = text
        self._order.append(index)
        LOGGER.debug("exported %s at slot %d", text, index)
        return index

    def export(self, declaration: str, *, slot: Optional[int] = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of :meth:`add`; returns the function unchanged."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add(fn, declaration, slot=slot)
            return fn

        return decorator

    def address_of_slot(self, slot: int) -> int:
        return self.base + slot * self.slot_width

    def symbol_dump(self) -> List[str]:
        """Symbol lines in declaration order, preceded by the start marker."""
        lines = [f"{self.base:016x} D {self.marker}"]
        for slot in self._order:
            lines.append(f"{self.address_of_slot(slot):016x} T {self._declarations[slot]}")
        return lines

    def symbols(self) -> List[ExportedSymbol]:
        return read_symbol_dump(self.symbol_dump())

    def build_table(self) -> CommandTable:
        return build_table(self.symbols(), prefix=self.prefix, marker=self.marker, slot_width=self.slot_width)

    def registry(self) -> CallableRegistry:
        slots = {self.address_of_slot(slot): fn for slot, fn in self._slots.items()}
        return CallableRegistry(slots, self.base, self.slot_width)


__all__ = ["DEFAULT_BASE", "ExportRegion"]
