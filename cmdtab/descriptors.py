"""Language-neutral type model for exported command signatures.

A :class:`TypeDescriptor` is a closed tagged variant.  Every descriptor
knows whether it has a fixed wire size; variable sized values travel with a
length prefix.  Descriptors are frozen so signatures built once can be
shared by every dispatch engine without copying.
"""

from __future__ import annotations

import enum
import keyword
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

_INT_WIDTHS = (1, 2, 4, 8)
_FLOAT_WIDTHS = (4, 8)


class TypeKind(enum.Enum):
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    STRING = "string"
    SEQUENCE = "sequence"
    ARRAY = "array"
    VOID = "void"


@dataclass(frozen=True)
class TypeDescriptor:
    kind: TypeKind
    width: int = 0
    signed: bool = True
    element: Optional["TypeDescriptor"] = None
    length: int = 0

    def __post_init__(self) -> None:
        if self.kind is TypeKind.INT and self.width not in _INT_WIDTHS:
            raise ValueError(f"integer width must be one of {_INT_WIDTHS}, got {self.width}")
        if self.kind is TypeKind.FLOAT and self.width not in _FLOAT_WIDTHS:
            raise ValueError(f"float width must be one of {_FLOAT_WIDTHS}, got {self.width}")
        if self.kind in (TypeKind.SEQUENCE, TypeKind.ARRAY):
            if self.element is None:
                raise ValueError(f"{self.kind.value} requires an element type")
            if self.element.kind is TypeKind.VOID:
                raise ValueError(f"{self.kind.value} of void is not a value type")
            # element counts are only bounded by the payload when each element takes bytes
            if self.element.fixed_size == 0:
                raise ValueError(f"{self.kind.value} of zero-sized {self.element.describe()}")
        if self.kind is TypeKind.ARRAY and self.length < 0:
            raise ValueError("array length must be non-negative")

    @property
    def is_fixed_size(self) -> bool:
        if self.kind in (TypeKind.INT, TypeKind.FLOAT, TypeKind.BOOL, TypeKind.VOID):
            return True
        if self.kind is TypeKind.ARRAY:
            assert self.element is not None
            return self.element.is_fixed_size
        return False

    @property
    def fixed_size(self) -> Optional[int]:
        """Encoded size in bytes, or None for length-prefixed values."""
        if self.kind in (TypeKind.INT, TypeKind.FLOAT):
            return self.width
        if self.kind is TypeKind.BOOL:
            return 1
        if self.kind is TypeKind.VOID:
            return 0
        if self.kind is TypeKind.ARRAY:
            assert self.element is not None
            inner = self.element.fixed_size
            return None if inner is None else inner * self.length
        return None

    def describe(self) -> str:
        """Canonical spelling, also accepted by the translator."""
        if self.kind is TypeKind.INT:
            return f"{'int' if self.signed else 'uint'}{self.width * 8}"
        if self.kind is TypeKind.FLOAT:
            return f"float{self.width * 8}"
        if self.kind is TypeKind.SEQUENCE:
            assert self.element is not None
            return f"sequence<{self.element.describe()}>"
        if self.kind is TypeKind.ARRAY:
            assert self.element is not None
            return f"array<{self.element.describe()}, {self.length}>"
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value}
        if self.kind is TypeKind.INT:
            data["width"] = self.width
            data["signed"] = self.signed
        elif self.kind is TypeKind.FLOAT:
            data["width"] = self.width
        elif self.kind in (TypeKind.SEQUENCE, TypeKind.ARRAY):
            assert self.element is not None
            data["element"] = self.element.to_dict()
            if self.kind is TypeKind.ARRAY:
                data["length"] = self.length
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TypeDescriptor":
        kind = TypeKind(data["kind"])
        element = data.get("element")
        return cls(
            kind=kind,
            width=int(data.get("width", 0)),
            signed=bool(data.get("signed", True)),
            element=cls.from_dict(element) if element is not None else None,
            length=int(data.get("length", 0)),
        )

    def to_source(self) -> str:
        """Python expression that rebuilds this descriptor (used by the stub generator)."""
        if self.kind is TypeKind.INT:
            return f"int_type({self.width}, signed={self.signed})"
        if self.kind is TypeKind.FLOAT:
            return f"float_type({self.width})"
        if self.kind is TypeKind.SEQUENCE:
            assert self.element is not None
            return f"sequence_of({self.element.to_source()})"
        if self.kind is TypeKind.ARRAY:
            assert self.element is not None
            return f"array_of({self.element.to_source()}, {self.length})"
        return {TypeKind.BOOL: "BOOL", TypeKind.STRING: "STRING", TypeKind.VOID: "VOID"}[self.kind]


def int_type(width: int, *, signed: bool = True) -> TypeDescriptor:
    return TypeDescriptor(TypeKind.INT, width=width, signed=signed)


def float_type(width: int) -> TypeDescriptor:
    return TypeDescriptor(TypeKind.FLOAT, width=width)


def sequence_of(element: TypeDescriptor) -> TypeDescriptor:
    return TypeDescriptor(TypeKind.SEQUENCE, element=element)


def array_of(element: TypeDescriptor, length: int) -> TypeDescriptor:
    return TypeDescriptor(TypeKind.ARRAY, element=element, length=length)


BOOL = TypeDescriptor(TypeKind.BOOL)
STRING = TypeDescriptor(TypeKind.STRING)
VOID = TypeDescriptor(TypeKind.VOID)


@dataclass(frozen=True)
class Signature:
    """Translated call contract for one command table entry."""

    name: str
    returns: TypeDescriptor
    params: Tuple[TypeDescriptor, ...] = ()
    param_names: Tuple[str, ...] = ()
    mangled: str = ""
    command_number: int = -1
    binding_name: str = ""
    text: str = field(default="", compare=False)

    @property
    def arity(self) -> int:
        return len(self.params)

    def describe(self) -> str:
        params = ", ".join(
            f"{name}: {desc.describe()}" for name, desc in zip(self.param_names, self.params)
        )
        return f"{self.name}({params}) -> {self.returns.describe()}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "binding": self.binding_name,
            "command": self.command_number,
            "mangled": self.mangled,
            "returns": self.returns.to_dict(),
            "params": [
                {"name": name, "type": desc.to_dict()}
                for name, desc in zip(self.param_names, self.params)
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        params = data.get("params") or []
        return cls(
            name=data["name"],
            returns=TypeDescriptor.from_dict(data["returns"]),
            params=tuple(TypeDescriptor.from_dict(item["type"]) for item in params),
            param_names=tuple(str(item["name"]) for item in params),
            mangled=data.get("mangled", ""),
            command_number=int(data.get("command", -1)),
            binding_name=data.get("binding", ""),
        )


def python_identifier(name: str) -> str:
    """Coerce a symbol name into something usable as a Python identifier."""
    cleaned = "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in name)
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    if keyword.iskeyword(cleaned):
        cleaned = f"{cleaned}_"
    return cleaned


__all__ = [
    "BOOL",
    "STRING",
    "VOID",
    "Signature",
    "TypeDescriptor",
    "TypeKind",
    "array_of",
    "float_type",
    "int_type",
    "python_identifier",
    "sequence_of",
]
