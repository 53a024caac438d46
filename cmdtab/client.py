"""Caller-side channels used by generated stubs.

A channel has one job: ``call(command_number, payloads) -> bytes``.  It
frames the request, waits for the single response frame and either
returns the value payload or raises :class:`RemoteError`.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Optional, Sequence

from cmdtab import wire_constants as wire_const
from cmdtab.codec import (
    DEFAULT_WIRE,
    CommandRequest,
    CommandResponse,
    WireConfig,
    decode_request,
    decode_response,
    encode_request,
    encode_response,
    read_response,
)
from cmdtab.errors import CmdTabError, OutOfRangeError, RemoteError

LOGGER = logging.getLogger("cmdtab.client")

# The server drops the connection after sending one of these.
_CONNECTION_FATAL = frozenset(
    {
        wire_const.Status.ERANGE,
        wire_const.Status.ETRUNC,
        wire_const.Status.ETIMEDOUT,
    }
)


class ChannelError(CmdTabError):
    """Raised when the channel cannot complete an operation."""


def _unwrap(response: CommandResponse) -> bytes:
    if response.error_code is not None:
        raise RemoteError(response.error_code, response.message)
    return response.payload


@dataclass
class ChannelConfig:
    host: str = "127.0.0.1"
    port: int = 9990
    connect_timeout: float = 2.0
    read_timeout: Optional[float] = 30.0
    reconnect_backoff: float = 0.25
    max_backoff: float = 2.0
    max_retries: int = 3


@dataclass
class SocketChannel:
    """Synchronous TCP channel; connects lazily and reconnects after drops."""

    config: ChannelConfig = field(default_factory=ChannelConfig)
    wire: WireConfig = DEFAULT_WIRE

    _sock: Optional[socket.socket] = field(init=False, default=None, repr=False)
    _rfile: Optional[BinaryIO] = field(init=False, default=None, repr=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        if self._sock is not None:
            return
        sock = self._connect_with_backoff()
        self._sock = sock
        self._rfile = sock.makefile("rb")

    def close(self) -> None:
        rfile, sock = self._rfile, self._sock
        self._rfile = None
        self._sock = None
        if rfile is not None:
            try:
                rfile.close()
            except OSError:
                pass
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

    def __enter__(self) -> "SocketChannel":
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _connect_with_backoff(self) -> socket.socket:
        attempt = 0
        backoff = self.config.reconnect_backoff
        last_error: Optional[OSError] = None
        while True:
            attempt += 1
            try:
                sock = socket.create_connection(
                    (self.config.host, self.config.port),
                    timeout=self.config.connect_timeout,
                )
                sock.settimeout(self.config.read_timeout)
                return sock
            except OSError as exc:
                last_error = exc
                if self.config.max_retries > 0 and attempt >= self.config.max_retries:
                    break
                time.sleep(backoff)
                backoff = min(backoff * 2, self.config.max_backoff)
        raise ChannelError(f"connect to {self.config.host}:{self.config.port} failed: {last_error}") from last_error

    def call(self, command_number: int, payloads: Sequence[bytes]) -> bytes:
        frame = encode_request(CommandRequest.from_payloads(command_number, payloads), self.wire)
        with self._lock:
            self.connect()
            assert self._sock is not None and self._rfile is not None
            try:
                self._sock.sendall(frame)
                response = read_response(self._rfile, self.wire)
            except (OSError, CmdTabError) as exc:
                self.close()
                if isinstance(exc, CmdTabError):
                    raise
                raise ChannelError(f"command {command_number} failed: {exc}") from exc
            if response.error_code in _CONNECTION_FATAL:
                self.close()
        return _unwrap(response)


class LoopbackChannel:
    """In-process channel that pushes encoded frames through an engine."""

    def __init__(self, engine: Any, wire: Optional[WireConfig] = None) -> None:
        self.engine = engine
        self.wire = wire or engine.wire

    def call(self, command_number: int, payloads: Sequence[bytes]) -> bytes:
        request = decode_request(
            encode_request(CommandRequest.from_payloads(command_number, payloads), self.wire), self.wire
        )
        try:
            response = self.engine.handle(request)
        except OutOfRangeError as exc:
            response = CommandResponse.error(exc.code, str(exc))
        return _unwrap(decode_response(encode_response(response, self.wire), self.wire))


__all__ = ["ChannelConfig", "ChannelError", "LoopbackChannel", "SocketChannel"]
