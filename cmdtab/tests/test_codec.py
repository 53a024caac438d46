"""Wire codec tests."""

from __future__ import annotations

import io

import pytest

from cmdtab import wire_constants as wire_const
from cmdtab.codec import (
    CommandRequest,
    CommandResponse,
    WireConfig,
    decode_request,
    decode_response,
    decode_value,
    encode_request,
    encode_response,
    encode_value,
    read_request,
    read_response,
)
from cmdtab.descriptors import BOOL, STRING, VOID, array_of, float_type, int_type, sequence_of
from cmdtab.errors import CodecError, TruncatedFrameError

INT64 = int_type(8)


def test_request_layout_is_little_endian():
    request = CommandRequest.from_payloads(3, [encode_value(INT64, 2), encode_value(INT64, 3)])
    data = encode_request(request)
    assert data[:4] == b"\x03\x00\x00\x00"
    assert data[4:6] == b"\x02\x00"
    assert data[6:10] == b"\x08\x00\x00\x00"
    assert data[10:18] == (2).to_bytes(8, "little")
    assert len(data) == 4 + 2 + 2 * (4 + 8)
    assert decode_request(data) == request


def test_big_endian_wire():
    wire = WireConfig(byte_order="big")
    data = encode_request(CommandRequest.from_payloads(1, [b"xy"]), wire)
    assert data == b"\x00\x00\x00\x01" + b"\x00\x01" + b"\x00\x00\x00\x02" + b"xy"
    assert encode_value(int_type(2), 258, wire) == b"\x01\x02"


def test_declared_size_beyond_buffer_is_truncated():
    data = b"\x03\x00\x00\x00" + b"\x01\x00" + b"\x40\x00\x00\x00" + b"abcd"
    with pytest.raises(TruncatedFrameError) as excinfo:
        decode_request(data)
    assert excinfo.value.code == wire_const.Status.ETRUNC


def test_huge_declared_size_on_short_buffer_is_truncated():
    data = b"\x00\x00\x00\x00" + b"\x01\x00" + (0x01000001).to_bytes(4, "little") + b"abc"
    with pytest.raises(TruncatedFrameError) as excinfo:
        decode_request(data)
    assert excinfo.value.code == wire_const.Status.ETRUNC


def test_trailing_bytes_are_rejected():
    data = encode_request(CommandRequest.from_payloads(0, [])) + b"\x00"
    with pytest.raises(CodecError):
        decode_request(data)


def test_oversize_frame_is_rejected():
    wire = WireConfig(max_frame_size=16)
    with pytest.raises(CodecError):
        encode_request(CommandRequest.from_payloads(0, [b"x" * 17]), wire)
    data = b"\x00\x00\x00\x00\x01\x00" + (17).to_bytes(4, "little") + b"x" * 17
    with pytest.raises(CodecError):
        decode_request(data, wire)


def test_error_response_frame():
    frame = encode_response(CommandResponse.error(wire_const.Status.ERANGE, "bad"))
    assert frame == b"\xff\xff\xff\xff" + b"\x02\x00" + b"\x03\x00\x00\x00" + b"bad"
    decoded = decode_response(frame)
    assert decoded.is_error
    assert decoded.error_code == wire_const.Status.ERANGE
    assert decoded.message == "bad"


def test_value_response_frame():
    frame = encode_response(CommandResponse.value(b"\x05"))
    assert frame == b"\x01\x00\x00\x00\x05"
    assert decode_response(frame) == CommandResponse.value(b"\x05")


def test_read_request_stream_boundaries():
    assert read_request(io.BytesIO(b"")) is None
    with pytest.raises(TruncatedFrameError):
        read_request(io.BytesIO(b"\x03\x00"))
    first = encode_request(CommandRequest.from_payloads(1, [b"a"]))
    second = encode_request(CommandRequest.from_payloads(2, []))
    stream = io.BytesIO(first + second)
    assert read_request(stream).command_number == 1
    assert read_request(stream).command_number == 2
    assert read_request(stream) is None


def test_read_response_from_stream():
    stream = io.BytesIO(encode_response(CommandResponse.error(6, "boom")) + encode_response(CommandResponse.value(b"ok")))
    assert read_response(stream).error_code == 6
    assert read_response(stream).payload == b"ok"
    with pytest.raises(TruncatedFrameError):
        read_response(stream)


@pytest.mark.parametrize(
    "desc, value",
    [
        (int_type(1, signed=False), 255),
        (int_type(4), -7),
        (float_type(8), 2.5),
        (BOOL, True),
        (STRING, "café"),
        (sequence_of(STRING), ["a.txt", "", "notes"]),
        (sequence_of(sequence_of(int_type(2))), [[1, 2], [], [3]]),
        (array_of(float_type(4), 3), [1.0, 0.5, -2.0]),
        (array_of(STRING, 2), ["x", "yz"]),
    ],
)
def test_value_round_trip(desc, value):
    assert decode_value(desc, encode_value(desc, value)) == value


def test_sequence_layout():
    data = encode_value(sequence_of(STRING), ["ab", "c"])
    assert data == b"\x02\x00\x00\x00" + b"\x02\x00\x00\x00ab" + b"\x01\x00\x00\x00c"
    assert encode_value(sequence_of(int_type(2)), [1, 2]) == b"\x02\x00\x00\x00\x01\x00\x02\x00"


def test_void_is_empty():
    assert encode_value(VOID, None) == b""
    assert decode_value(VOID, b"") is None
    with pytest.raises(CodecError):
        encode_value(VOID, 0)


@pytest.mark.parametrize(
    "desc, value",
    [
        (int_type(1), 128),
        (int_type(4, signed=False), -1),
        (int_type(4), True),
        (BOOL, 1),
        (STRING, b"bytes"),
        (sequence_of(int_type(4)), "123"),
        (array_of(int_type(4), 2), [1, 2, 3]),
    ],
)
def test_encode_rejects_bad_values(desc, value):
    with pytest.raises(CodecError):
        encode_value(desc, value)


def test_decode_rejects_malformed_payloads():
    with pytest.raises(CodecError):
        decode_value(int_type(4), b"\x00\x00")
    with pytest.raises(CodecError):
        decode_value(BOOL, b"\x02")
    with pytest.raises(CodecError):
        decode_value(sequence_of(int_type(4)), b"\xff\xff\x00\x00" + b"\x00" * 8)
    with pytest.raises(CodecError):
        decode_value(STRING, b"\xff")


def test_containers_of_zero_sized_elements_are_refused():
    with pytest.raises(ValueError):
        sequence_of(array_of(int_type(4), 0))
    with pytest.raises(ValueError):
        array_of(array_of(BOOL, 0), 1 << 32)
    # a zero-length array on its own is still a value
    assert decode_value(array_of(int_type(4), 0), b"") == []


class _DripStream:
    """Hands out one byte per read, like a peer sending a byte at a time."""

    def __init__(self, data):
        self._data = io.BytesIO(data)

    def read1(self, count):
        return self._data.read(min(count, 1))


def test_read_request_reports_each_read():
    data = encode_request(CommandRequest.from_payloads(7, [b"ab"]))
    seen = []
    request = read_request(_DripStream(data), before_read=seen.append)
    assert request == CommandRequest.from_payloads(7, [b"ab"])
    assert len(seen) == len(data)
    assert seen[0] is False
    assert all(seen[1:])


def test_before_read_can_abort_a_frame():
    data = encode_request(CommandRequest.from_payloads(7, [b"abcdef"]))

    reads = []

    def budget(in_frame):
        reads.append(in_frame)
        if len(reads) > 5:
            raise TimeoutError("frame budget spent")

    with pytest.raises(TimeoutError):
        read_request(_DripStream(data), before_read=budget)
    assert len(reads) == 6
