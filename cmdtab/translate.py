"""Signature translation: demangled symbol text -> :class:`Signature`.

Accepted input looks like either of::

    ex_dirlist(path: string) -> sequence<string>
    ex_add(int, int)

Tokens are split on top-level commas only, so nested generic arguments such
as ``std::vector<int, std::allocator<int> >`` stay intact.  Each token is
mapped through a closed vocabulary; anything unknown raises
:class:`UnsupportedTypeError` for that one symbol.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from cmdtab.descriptors import (
    BOOL,
    STRING,
    VOID,
    Signature,
    TypeDescriptor,
    TypeKind,
    array_of,
    float_type,
    int_type,
    python_identifier,
    sequence_of,
)
from cmdtab.errors import UnsupportedTypeError
from cmdtab.symbols import ExportedSymbol

_OPENERS = {"<": ">", "(": ")", "[": "]"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}

_NAMED_PARAM_RE = re.compile(r"^([A-Za-z_]\w*)\s*:(?!:)\s*(.+)$")
_ARRAY_SUFFIX_RE = re.compile(r"^(.+)\[(\d+)\]$")
_GENERIC_RE = re.compile(r"^([A-Za-z_][\w:]*)<(.*)>$")
_INT_LITERAL_RE = re.compile(r"^(\d+)[uUlL]*$")
_CONST_RE = re.compile(r"\bconst\b")

_SCALARS: Dict[str, TypeDescriptor] = {
    "void": VOID,
    # fixed width spellings
    "int8": int_type(1),
    "int16": int_type(2),
    "int32": int_type(4),
    "int64": int_type(8),
    "uint8": int_type(1, signed=False),
    "uint16": int_type(2, signed=False),
    "uint32": int_type(4, signed=False),
    "uint64": int_type(8, signed=False),
    "int8_t": int_type(1),
    "int16_t": int_type(2),
    "int32_t": int_type(4),
    "int64_t": int_type(8),
    "uint8_t": int_type(1, signed=False),
    "uint16_t": int_type(2, signed=False),
    "uint32_t": int_type(4, signed=False),
    "uint64_t": int_type(8, signed=False),
    "integer": int_type(8),
    # C spellings (LP64)
    "char": int_type(1),
    "signed char": int_type(1),
    "unsigned char": int_type(1, signed=False),
    "short": int_type(2),
    "short int": int_type(2),
    "unsigned short": int_type(2, signed=False),
    "unsigned short int": int_type(2, signed=False),
    "int": int_type(4),
    "unsigned": int_type(4, signed=False),
    "unsigned int": int_type(4, signed=False),
    "long": int_type(8),
    "long int": int_type(8),
    "unsigned long": int_type(8, signed=False),
    "unsigned long int": int_type(8, signed=False),
    "long long": int_type(8),
    "long long int": int_type(8),
    "unsigned long long": int_type(8, signed=False),
    "unsigned long long int": int_type(8, signed=False),
    "size_t": int_type(8, signed=False),
    "ssize_t": int_type(8),
    # floating point
    "float32": float_type(4),
    "float": float_type(4),
    "float64": float_type(8),
    "double": float_type(8),
    # bool
    "bool": BOOL,
    "boolean": BOOL,
    "_Bool": BOOL,
    # strings
    "string": STRING,
    "str": STRING,
    "char*": STRING,
    "std::string": STRING,
}

_SEQUENCE_NAMES = frozenset({"sequence", "list", "vector", "std::vector"})
_ARRAY_NAMES = frozenset({"array", "std::array"})
_STRING_TEMPLATE_RE = re.compile(r"^std::(?:__cxx11::)?basic_string<char[,>]")
# attributes of the generated stub class
_RESERVED_BINDINGS = frozenset({"_channel", "_wire"})


def split_top_level(text: str, sep: str = ",") -> List[str]:
    """Split ``text`` on ``sep`` where no bracket is open."""
    parts: List[str] = []
    stack: List[str] = []
    current: List[str] = []
    for ch in text:
        if ch in _OPENERS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or stack[-1] != _CLOSERS[ch]:
                raise ValueError(f"unbalanced '{ch}' in '{text}'")
            stack.pop()
        elif ch == sep and not stack:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if stack:
        raise ValueError(f"unclosed '{stack[-1]}' in '{text}'")
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def _matching_paren(text: str, start: int) -> int:
    depth = 0
    for index in range(start, len(text)):
        ch = text[index]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return index
    return -1


def split_signature(text: str) -> Tuple[str, List[Tuple[Optional[str], str]], Optional[str]]:
    """Split signature text into (name, [(param_name, type_token)], return_token).

    Raises ValueError when the text is not a call signature at all.
    """
    stripped = text.strip()
    open_index = stripped.find("(")
    if open_index <= 0:
        raise ValueError(f"no parameter list in '{text}'")
    close_index = _matching_paren(stripped, open_index)
    if close_index < 0:
        raise ValueError(f"unterminated parameter list in '{text}'")
    name = stripped[:open_index].strip()
    inner = stripped[open_index + 1 : close_index].strip()
    tail = stripped[close_index + 1 :].strip()

    return_token: Optional[str] = None
    if tail:
        if not tail.startswith("->"):
            raise ValueError(f"unexpected trailer '{tail}' in '{text}'")
        return_token = tail[2:].strip()
        if not return_token:
            raise ValueError(f"missing return type in '{text}'")

    params: List[Tuple[Optional[str], str]] = []
    if inner and inner != "void":
        for part in split_top_level(inner):
            if not part:
                raise ValueError(f"empty parameter in '{text}'")
            match = _NAMED_PARAM_RE.match(part)
            if match:
                params.append((match.group(1), match.group(2).strip()))
            else:
                params.append((None, part))
    return name, params, return_token


def _normalise(token: str) -> str:
    text = _CONST_RE.sub(" ", token).rstrip().rstrip("&")
    text = " ".join(text.split())
    text = re.sub(r"\s*([*<>,\[\]])\s*", r"\1", text)
    return text.replace(",", ", ")


def descriptor_for(token: str) -> TypeDescriptor:
    """Map one type token to a descriptor or raise UnsupportedTypeError."""
    text = _normalise(token)
    scalar = _SCALARS.get(text)
    if scalar is not None:
        return scalar
    if _STRING_TEMPLATE_RE.match(text):
        return STRING

    suffix = _ARRAY_SUFFIX_RE.match(text)
    if suffix:
        return _element_container(token, suffix.group(1), array_length=suffix.group(2))

    generic = _GENERIC_RE.match(text)
    if generic:
        base, args_text = generic.group(1), generic.group(2)
        try:
            args = split_top_level(args_text)
        except ValueError as exc:
            raise UnsupportedTypeError(token, reason=str(exc)) from exc
        if base in _SEQUENCE_NAMES:
            # std::vector<T, std::allocator<T> > carries its allocator along
            if len(args) == 2 and args[1].startswith("std::allocator<"):
                args = args[:1]
            if len(args) != 1:
                raise UnsupportedTypeError(token, reason=f"'{base}' takes one type argument")
            return _element_container(token, args[0])
        if base in _ARRAY_NAMES:
            if len(args) != 2:
                raise UnsupportedTypeError(token, reason=f"'{base}' takes a type and a length")
            return _element_container(token, args[0], array_length=args[1])
    raise UnsupportedTypeError(token)


def _element_container(token: str, element_token: str, array_length: Optional[str] = None) -> TypeDescriptor:
    element = descriptor_for(element_token)
    if element.kind is TypeKind.VOID:
        raise UnsupportedTypeError(token, reason="container of void")
    if element.fixed_size == 0:
        raise UnsupportedTypeError(token, reason=f"container of zero-sized {element.describe()}")
    if array_length is None:
        return sequence_of(element)
    match = _INT_LITERAL_RE.match(array_length.strip())
    if not match:
        raise UnsupportedTypeError(token, reason=f"array length '{array_length}' is not a literal")
    return array_of(element, int(match.group(1)))


def translate(text: str) -> Tuple[str, TypeDescriptor, List[Tuple[str, TypeDescriptor]]]:
    """Translate signature text to (name, return descriptor, [(param name, descriptor)])."""
    try:
        name, params, return_token = split_signature(text)
    except ValueError as exc:
        raise UnsupportedTypeError(text, reason=str(exc)) from exc
    returns = descriptor_for(return_token) if return_token is not None else VOID
    translated: List[Tuple[str, TypeDescriptor]] = []
    for index, (param_name, param_token) in enumerate(params):
        desc = descriptor_for(param_token)
        if desc.kind is TypeKind.VOID:
            raise UnsupportedTypeError(param_token, reason="void is not a parameter type")
        translated.append((python_identifier(param_name) if param_name else f"arg{index}", desc))
    return name, returns, translated


def tokenize_symbol(symbol: ExportedSymbol) -> ExportedSymbol:
    """Fill in the return/parameter tokens of ``symbol`` from its signature text."""
    try:
        _, params, return_token = split_signature(symbol.demangled)
    except ValueError:
        return symbol
    return ExportedSymbol(
        address=symbol.address,
        symbol_type=symbol.symbol_type,
        demangled=symbol.demangled,
        mangled=symbol.mangled,
        offset=symbol.offset,
        return_token=return_token,
        param_tokens=tuple(token for _, token in params),
        param_names=tuple(name for name, _ in params),
    )


def translate_symbol(symbol: ExportedSymbol, command_number: int) -> Signature:
    """Build the immutable Signature for one exported symbol."""
    try:
        name, returns, params = translate(symbol.demangled)
    except UnsupportedTypeError as exc:
        raise UnsupportedTypeError(exc.token, symbol=symbol.demangled, reason=exc.reason) from exc
    return Signature(
        name=name,
        returns=returns,
        params=tuple(desc for _, desc in params),
        param_names=tuple(param for param, _ in params),
        mangled=symbol.mangled or symbol.demangled,
        command_number=command_number,
        text=symbol.demangled,
    )


def assign_binding_names(signatures: Sequence[Signature], prefix: str = "") -> List[Signature]:
    """Give every signature a distinct caller-visible name.

    Overloads sharing a name get ``_<ordinal>`` in table order; unique names
    are kept as they are (minus the export prefix).
    """
    def base_name(sig: Signature) -> str:
        bare = sig.name[len(prefix):] if prefix and sig.name.startswith(prefix) else sig.name
        name = python_identifier(bare.rsplit("::", 1)[-1])
        # bindings become methods next to the stub class internals
        if name.startswith("__") or name in _RESERVED_BINDINGS:
            name = f"cmd{name}"
        return name

    ordered = sorted(signatures, key=lambda sig: sig.command_number)
    groups: Dict[str, List[Signature]] = defaultdict(list)
    for sig in ordered:
        groups[base_name(sig)].append(sig)
    taken = {name for name, members in groups.items() if len(members) == 1}

    renamed: Dict[int, str] = {}
    for name, members in groups.items():
        if len(members) == 1:
            renamed[members[0].command_number] = name
            continue
        ordinal = 0
        for sig in members:
            candidate = f"{name}_{ordinal}"
            while candidate in taken:
                ordinal += 1
                candidate = f"{name}_{ordinal}"
            taken.add(candidate)
            renamed[sig.command_number] = candidate
            ordinal += 1
    return [replace(sig, binding_name=renamed[sig.command_number]) for sig in signatures]


__all__ = [
    "assign_binding_names",
    "descriptor_for",
    "split_signature",
    "split_top_level",
    "tokenize_symbol",
    "translate",
    "translate_symbol",
]
