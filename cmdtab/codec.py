"""Wire codec shared by the stub generator output and the dispatch runtime.

Request::

    command_number:uint(W1) | arg_count:uint(W2) | { size:uint(W3) | bytes }*

Response::

    size:uint(W3) | bytes                                    (value)
    SENTINEL:uint(W3) | code:uint(E) | size:uint(W3) | utf8  (error)

Widths, byte order and the sentinel come from ``cmdtab_wire.h`` through
:class:`WireConfig`; both ends must use the same instance.
"""

from __future__ import annotations

import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Iterable, List, Optional, Tuple, Type

from cmdtab import wire_constants as wire_const
from cmdtab.descriptors import TypeDescriptor, TypeKind
from cmdtab.errors import CmdTabError, CodecError, TruncatedFrameError

_VALID_WIDTHS = (1, 2, 4, 8)


@dataclass(frozen=True)
class WireConfig:
    byte_order: str = wire_const.WIRE.byte_order
    command_width: int = wire_const.WIRE.command_width
    arg_count_width: int = wire_const.WIRE.arg_count_width
    size_width: int = wire_const.WIRE.size_width
    error_code_width: int = wire_const.WIRE.error_code_width
    error_sentinel: int = wire_const.WIRE.error_sentinel
    max_frame_size: int = 1 << 24

    def __post_init__(self) -> None:
        if self.byte_order not in ("little", "big"):
            raise ValueError(f"byte order must be 'little' or 'big', got {self.byte_order!r}")
        for name in ("command_width", "arg_count_width", "size_width", "error_code_width"):
            width = getattr(self, name)
            if width not in _VALID_WIDTHS:
                raise ValueError(f"{name} must be one of {_VALID_WIDTHS}, got {width}")
        if not 0 < self.error_sentinel < (1 << (8 * self.size_width)):
            raise ValueError("error sentinel must fit the size field")
        if self.max_frame_size >= self.error_sentinel:
            object.__setattr__(self, "max_frame_size", self.error_sentinel - 1)

    @property
    def struct_prefix(self) -> str:
        return "<" if self.byte_order == "little" else ">"

    def pack_uint(self, value: int, width: int) -> bytes:
        try:
            return int(value).to_bytes(width, self.byte_order, signed=False)
        except OverflowError as exc:
            raise CodecError(f"{value} does not fit in {width} unsigned bytes") from exc

    def unpack_uint(self, data: bytes) -> int:
        return int.from_bytes(data, self.byte_order, signed=False)


DEFAULT_WIRE = WireConfig()


# ---------------------------------------------------------------------------
# Frames


@dataclass(frozen=True)
class ArgumentFrame:
    size: int
    payload: bytes

    def __post_init__(self) -> None:
        if self.size != len(self.payload):
            raise CodecError(f"frame declares {self.size} bytes but carries {len(self.payload)}")

    @classmethod
    def of(cls, payload: bytes) -> "ArgumentFrame":
        data = bytes(payload)
        return cls(size=len(data), payload=data)


@dataclass(frozen=True)
class CommandRequest:
    command_number: int
    args: Tuple[ArgumentFrame, ...] = ()

    @classmethod
    def from_payloads(cls, command_number: int, payloads: Iterable[bytes]) -> "CommandRequest":
        return cls(command_number=command_number, args=tuple(ArgumentFrame.of(p) for p in payloads))


@dataclass(frozen=True)
class CommandResponse:
    payload: bytes = b""
    error_code: Optional[int] = None
    message: str = ""

    @property
    def is_error(self) -> bool:
        return self.error_code is not None

    @property
    def size(self) -> int:
        return len(self.payload)

    @classmethod
    def value(cls, payload: bytes) -> "CommandResponse":
        return cls(payload=bytes(payload))

    @classmethod
    def error(cls, code: int, message: str = "") -> "CommandResponse":
        return cls(error_code=int(code), message=message)


class _Reader:
    """Cursor over a byte buffer that raises ``error`` on overrun."""

    def __init__(self, data: bytes, wire: WireConfig, error: Type[CmdTabError] = TruncatedFrameError) -> None:
        self._view = memoryview(bytes(data))
        self._pos = 0
        self._wire = wire
        self._error = error

    @property
    def remaining(self) -> int:
        return len(self._view) - self._pos

    def take(self, count: int, what: str = "field") -> bytes:
        if count > self.remaining:
            raise self._error(f"{what} needs {count} bytes, {self.remaining} remaining")
        chunk = self._view[self._pos : self._pos + count].tobytes()
        self._pos += count
        return chunk

    def uint(self, width: int, what: str = "field") -> int:
        return self._wire.unpack_uint(self.take(width, what))

    def expect_end(self, what: str) -> None:
        if self.remaining:
            raise CodecError(f"{self.remaining} trailing bytes after {what}")


def _check_frame_size(size: int, wire: WireConfig) -> None:
    if size > wire.max_frame_size:
        raise CodecError(f"frame of {size} bytes exceeds limit of {wire.max_frame_size}")


def encode_request(request: CommandRequest, wire: WireConfig = DEFAULT_WIRE) -> bytes:
    out = bytearray()
    out += wire.pack_uint(request.command_number, wire.command_width)
    out += wire.pack_uint(len(request.args), wire.arg_count_width)
    for frame in request.args:
        _check_frame_size(frame.size, wire)
        out += wire.pack_uint(frame.size, wire.size_width)
        out += frame.payload
    return bytes(out)


def decode_request(data: bytes, wire: WireConfig = DEFAULT_WIRE) -> CommandRequest:
    """Decode exactly one request frame."""
    reader = _Reader(data, wire)
    command_number = reader.uint(wire.command_width, "command_number")
    arg_count = reader.uint(wire.arg_count_width, "arg_count")
    frames: List[ArgumentFrame] = []
    for index in range(arg_count):
        size = reader.uint(wire.size_width, f"argument {index} size")
        # a short frame is truncated whatever size it claims
        payload = reader.take(size, f"argument {index}")
        _check_frame_size(size, wire)
        frames.append(ArgumentFrame(size=size, payload=payload))
    reader.expect_end("request")
    return CommandRequest(command_number=command_number, args=tuple(frames))


def encode_response(response: CommandResponse, wire: WireConfig = DEFAULT_WIRE) -> bytes:
    if response.error_code is None:
        _check_frame_size(response.size, wire)
        return wire.pack_uint(response.size, wire.size_width) + response.payload
    message = response.message.encode("utf-8")[: wire.max_frame_size]
    return b"".join(
        (
            wire.pack_uint(wire.error_sentinel, wire.size_width),
            wire.pack_uint(response.error_code, wire.error_code_width),
            wire.pack_uint(len(message), wire.size_width),
            message,
        )
    )


def decode_response(data: bytes, wire: WireConfig = DEFAULT_WIRE) -> CommandResponse:
    reader = _Reader(data, wire)
    size = reader.uint(wire.size_width, "response size")
    if size == wire.error_sentinel:
        code = reader.uint(wire.error_code_width, "error code")
        length = reader.uint(wire.size_width, "error message size")
        text = reader.take(length, "error message").decode("utf-8", "replace")
        reader.expect_end("error response")
        return CommandResponse.error(code, text)
    _check_frame_size(size, wire)
    payload = reader.take(size, "response payload")
    reader.expect_end("response")
    return CommandResponse.value(payload)


# ---------------------------------------------------------------------------
# Stream framing


def _read_exact(
    stream: BinaryIO,
    count: int,
    what: str,
    *,
    allow_eof: bool = False,
    before_read: Optional[Callable[[bool], None]] = None,
    started: bool = True,
) -> Optional[bytes]:
    # read1 returns after a single underlying recv, so before_read runs
    # between every chunk that arrives.
    read = getattr(stream, "read1", None) or stream.read
    buffer = bytearray()
    while len(buffer) < count:
        if before_read is not None:
            before_read(started or bool(buffer))
        chunk = read(count - len(buffer))
        if not chunk:
            if allow_eof and not buffer:
                return None
            raise TruncatedFrameError(f"stream closed inside {what} ({len(buffer)}/{count} bytes)")
        buffer += chunk
    return bytes(buffer)


def read_request(
    stream: BinaryIO,
    wire: WireConfig = DEFAULT_WIRE,
    *,
    before_read: Optional[Callable[[bool], None]] = None,
) -> Optional[CommandRequest]:
    """Read one request from a blocking stream; None on a clean close between frames.

    ``before_read(in_frame)`` is called before every read from ``stream``.
    ``in_frame`` is False only while waiting for the first byte of the
    request, so a caller can bound the time a whole frame takes to arrive.
    """

    def exact(count: int, what: str) -> bytes:
        return _read_exact(stream, count, what, before_read=before_read) or b""

    head = _read_exact(
        stream, wire.command_width, "command_number", allow_eof=True, before_read=before_read, started=False
    )
    if head is None:
        return None
    command_number = wire.unpack_uint(head)
    arg_count = wire.unpack_uint(exact(wire.arg_count_width, "arg_count"))
    frames: List[ArgumentFrame] = []
    for index in range(arg_count):
        size = wire.unpack_uint(exact(wire.size_width, f"argument {index} size"))
        _check_frame_size(size, wire)
        frames.append(ArgumentFrame(size=size, payload=exact(size, f"argument {index}")))
    return CommandRequest(command_number=command_number, args=tuple(frames))


def read_response(stream: BinaryIO, wire: WireConfig = DEFAULT_WIRE) -> CommandResponse:
    size = wire.unpack_uint(_read_exact(stream, wire.size_width, "response size") or b"")
    if size == wire.error_sentinel:
        code = wire.unpack_uint(_read_exact(stream, wire.error_code_width, "error code") or b"")
        length = wire.unpack_uint(_read_exact(stream, wire.size_width, "error message size") or b"")
        _check_frame_size(length, wire)
        text = (_read_exact(stream, length, "error message") or b"").decode("utf-8", "replace")
        return CommandResponse.error(code, text)
    _check_frame_size(size, wire)
    return CommandResponse.value(_read_exact(stream, size, "response payload") or b"")


# ---------------------------------------------------------------------------
# Values


def _float_struct(width: int, wire: WireConfig) -> struct.Struct:
    return struct.Struct(wire.struct_prefix + ("f" if width == 4 else "d"))


def encode_value(desc: TypeDescriptor, value: Any, wire: WireConfig = DEFAULT_WIRE) -> bytes:
    """Encode ``value`` as the payload of one frame for ``desc``."""
    kind = desc.kind
    if kind is TypeKind.VOID:
        if value is not None:
            raise CodecError(f"void takes no value, got {value!r}")
        return b""
    if kind is TypeKind.INT:
        if isinstance(value, bool) or not isinstance(value, int):
            raise CodecError(f"{desc.describe()} expects an integer, got {value!r}")
        try:
            return value.to_bytes(desc.width, wire.byte_order, signed=desc.signed)
        except OverflowError as exc:
            raise CodecError(f"{value} out of range for {desc.describe()}") from exc
    if kind is TypeKind.FLOAT:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise CodecError(f"{desc.describe()} expects a number, got {value!r}")
        try:
            return _float_struct(desc.width, wire).pack(float(value))
        except (OverflowError, struct.error) as exc:
            raise CodecError(f"{value} out of range for {desc.describe()}") from exc
    if kind is TypeKind.BOOL:
        if not isinstance(value, bool):
            raise CodecError(f"bool expects True or False, got {value!r}")
        return b"\x01" if value else b"\x00"
    if kind is TypeKind.STRING:
        if not isinstance(value, str):
            raise CodecError(f"string expects str, got {value!r}")
        return value.encode("utf-8")
    assert desc.element is not None
    if isinstance(value, (str, bytes, bytearray)) or not isinstance(value, Sequence):
        raise CodecError(f"{desc.describe()} expects a list, got {value!r}")
    parts = [_encode_element(desc.element, item, wire) for item in value]
    if kind is TypeKind.ARRAY:
        if len(value) != desc.length:
            raise CodecError(f"{desc.describe()} expects {desc.length} items, got {len(value)}")
        return b"".join(parts)
    return wire.pack_uint(len(value), wire.size_width) + b"".join(parts)


def _encode_element(desc: TypeDescriptor, value: Any, wire: WireConfig) -> bytes:
    data = encode_value(desc, value, wire)
    if desc.is_fixed_size:
        return data
    return wire.pack_uint(len(data), wire.size_width) + data


def decode_value(desc: TypeDescriptor, data: bytes, wire: WireConfig = DEFAULT_WIRE) -> Any:
    """Decode one frame payload according to ``desc``."""
    kind = desc.kind
    fixed = desc.fixed_size
    if fixed is not None and len(data) != fixed:
        raise CodecError(f"{desc.describe()} needs {fixed} bytes, got {len(data)}")
    if kind is TypeKind.VOID:
        return None
    if kind is TypeKind.INT:
        return int.from_bytes(data, wire.byte_order, signed=desc.signed)
    if kind is TypeKind.FLOAT:
        return _float_struct(desc.width, wire).unpack(data)[0]
    if kind is TypeKind.BOOL:
        if data not in (b"\x00", b"\x01"):
            raise CodecError(f"invalid bool byte {data!r}")
        return data == b"\x01"
    if kind is TypeKind.STRING:
        try:
            return bytes(data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CodecError(f"string is not valid UTF-8: {exc}") from exc
    assert desc.element is not None
    reader = _Reader(data, wire, error=CodecError)
    if kind is TypeKind.ARRAY:
        count = desc.length
    else:
        count = reader.uint(wire.size_width, "sequence count")
        element_size = desc.element.fixed_size
        if element_size is not None and element_size * count > reader.remaining:
            raise CodecError(f"{desc.describe()} declares {count} items, payload too short")
    items = [_decode_element(desc.element, reader, wire) for _ in range(count)]
    reader.expect_end(desc.describe())
    return items


def _decode_element(desc: TypeDescriptor, reader: _Reader, wire: WireConfig) -> Any:
    if desc.fixed_size is not None:
        chunk = reader.take(desc.fixed_size, desc.describe())
    else:
        size = reader.uint(wire.size_width, f"{desc.describe()} size")
        chunk = reader.take(size, desc.describe())
    return decode_value(desc, chunk, wire)


__all__ = [
    "ArgumentFrame",
    "CommandRequest",
    "CommandResponse",
    "DEFAULT_WIRE",
    "WireConfig",
    "decode_request",
    "decode_response",
    "decode_value",
    "encode_request",
    "encode_response",
    "encode_value",
    "read_request",
    "read_response",
]
