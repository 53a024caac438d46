"""Dispatch engine: one request in, one response out.

States per request::

    IDLE -> RECEIVING -> RESOLVING -> INVOKING -> RESPONDING -> IDLE

``CLOSED`` is terminal and is entered on a clean close or a
connection-fatal error (truncated frame, out-of-range command, receive
timeout).  Faults raised by an invoked function never leave the engine;
they become error response frames and the connection stays up.

Engines hold no mutable state besides their current state marker, so one
engine per connection can share a single table and registry.
"""

from __future__ import annotations

import enum
import logging
import socket
import socketserver
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, List, Optional, Tuple

from cmdtab import wire_constants as wire_const
from cmdtab.codec import (
    DEFAULT_WIRE,
    CommandRequest,
    CommandResponse,
    WireConfig,
    decode_value,
    encode_response,
    encode_value,
    read_request,
)
from cmdtab.descriptors import Signature
from cmdtab.errors import (
    ApplicationError,
    CmdTabError,
    CodecError,
    DispatchTimeoutError,
    OutOfRangeError,
    TruncatedFrameError,
    UnsupportedTypeError,
)
from cmdtab.registry import FunctionRegistry
from cmdtab.table import CommandTable, TableEntry

LOGGER = logging.getLogger("cmdtab.dispatch")


class EngineState(enum.Enum):
    IDLE = "idle"
    RECEIVING = "receiving"
    RESOLVING = "resolving"
    INVOKING = "invoking"
    RESPONDING = "responding"
    CLOSED = "closed"


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 9990
    request_timeout: Optional[float] = 30.0


class RequestDeadline:
    """Bounds the time from the first byte of a request to its last byte.

    Used as the ``before_read`` hook of :func:`read_request`.  While idle
    between requests the whole timeout applies to the next read; once a frame
    has started, each read only gets what is left of the request budget.
    """

    def __init__(
        self,
        timeout: Optional[float],
        set_timeout: Callable[[Optional[float]], None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self._set_timeout = set_timeout
        self._clock = clock
        self._expires: Optional[float] = None

    def __call__(self, in_frame: bool) -> None:
        if self.timeout is None:
            return
        if not in_frame:
            self._expires = None
            self._set_timeout(self.timeout)
            return
        now = self._clock()
        if self._expires is None:
            self._expires = now + self.timeout
        remaining = self._expires - now
        if remaining <= 0:
            raise DispatchTimeoutError(f"request not complete within {self.timeout}s")
        self._set_timeout(remaining)

    def release(self) -> None:
        """Give the socket its full timeout back for writing the response."""
        self._expires = None
        if self.timeout is not None:
            self._set_timeout(self.timeout)


class DispatchEngine:
    """Serves requests against one shared, read-only command table."""

    def __init__(
        self,
        table: CommandTable,
        registry: FunctionRegistry,
        *,
        wire: WireConfig = DEFAULT_WIRE,
        state_hook: Optional[Callable[[EngineState], None]] = None,
    ) -> None:
        if len(registry) != len(table):
            raise ValueError(f"registry has {len(registry)} slots, table has {len(table)} entries")
        self.table = table
        self.registry = registry
        self.wire = wire
        self._state = EngineState.IDLE
        self._state_hook = state_hook

    @property
    def state(self) -> EngineState:
        return self._state

    def _set_state(self, state: EngineState) -> None:
        self._state = state
        if self._state_hook is not None:
            self._state_hook(state)

    # ------------------------------------------------------------------
    # Single request

    def resolve(self, command_number: int) -> TableEntry:
        self._set_state(EngineState.RESOLVING)
        if not 0 <= command_number < len(self.table):
            raise OutOfRangeError(command_number, len(self.table))
        return self.table[command_number]

    def _decode_args(self, sig: Signature, request: CommandRequest) -> List[Any]:
        if len(request.args) != sig.arity:
            raise CodecError(f"{sig.name} takes {sig.arity} arguments, got {len(request.args)}")
        return [decode_value(desc, frame.payload, self.wire) for desc, frame in zip(sig.params, request.args)]

    def handle(self, request: CommandRequest) -> CommandResponse:
        """Resolve, invoke and encode one request.

        Raises :class:`OutOfRangeError` (connection-fatal); every other
        failure is returned as an error response.
        """
        entry = self.resolve(request.command_number)
        self._set_state(EngineState.INVOKING)
        response = self._invoke(entry, request)
        self._set_state(EngineState.RESPONDING)
        return response

    def _invoke(self, entry: TableEntry, request: CommandRequest) -> CommandResponse:
        sig = entry.signature
        number = entry.command_number
        if sig is None:
            reason = entry.rejection or "no accepted signature"
            return CommandResponse.error(wire_const.Status.EUNSUPPORTED, f"{entry.symbol.name}: {reason}")
        try:
            args = self._decode_args(sig, request)
        except CodecError as exc:
            LOGGER.info("command %d (%s): bad arguments: %s", number, sig.name, exc)
            return CommandResponse.error(wire_const.Status.EINVAL, str(exc))
        try:
            result = self.registry.invoke(number, args)
        except UnsupportedTypeError as exc:
            return CommandResponse.error(wire_const.Status.EUNSUPPORTED, f"{sig.name}: {exc.reason}")
        except Exception as exc:
            fault = ApplicationError(number, exc)
            LOGGER.info("%s", fault)
            return CommandResponse.error(fault.code, str(fault))
        try:
            payload = encode_value(sig.returns, result, self.wire)
        except CodecError as exc:
            fault = ApplicationError(number, exc)
            LOGGER.info("command %d (%s) returned a bad value: %s", number, sig.name, exc)
            return CommandResponse.error(fault.code, str(fault))
        return CommandResponse.value(payload)

    # ------------------------------------------------------------------
    # Connection loop

    def serve(
        self,
        rfile: BinaryIO,
        wfile: BinaryIO,
        *,
        deadline: Optional[RequestDeadline] = None,
    ) -> Optional[CmdTabError]:
        """Serve requests until the peer closes or a connection-fatal error.

        ``deadline`` is handed to :func:`read_request` as its ``before_read``
        hook; the server passes a :class:`RequestDeadline` bound to the socket.
        Returns None on a clean close, otherwise the error that ended the
        connection (after a best-effort error frame has been sent).
        """
        while True:
            self._set_state(EngineState.IDLE)
            try:
                self._set_state(EngineState.RECEIVING)
                try:
                    request = read_request(rfile, self.wire, before_read=deadline)
                except (socket.timeout, TimeoutError) as exc:
                    raise DispatchTimeoutError(f"no complete request within timeout: {exc}") from exc
                finally:
                    if deadline is not None:
                        deadline.release()
                if request is None:
                    self._set_state(EngineState.CLOSED)
                    return None
                response = self.handle(request)
            except (TruncatedFrameError, OutOfRangeError, DispatchTimeoutError, CodecError) as exc:
                LOGGER.warning("closing connection: %s", exc)
                self._send_best_effort(wfile, CommandResponse.error(exc.code or 0, str(exc)))
                self._set_state(EngineState.CLOSED)
                return exc
            try:
                wfile.write(encode_response(response, self.wire))
                wfile.flush()
            except OSError as exc:
                LOGGER.debug("peer went away while responding: %s", exc)
                self._set_state(EngineState.CLOSED)
                return None

    def _send_best_effort(self, wfile: BinaryIO, response: CommandResponse) -> None:
        try:
            wfile.write(encode_response(response, self.wire))
            wfile.flush()
        except (OSError, ValueError) as exc:
            LOGGER.debug("could not deliver error frame: %s", exc)


class _DispatchHandler(socketserver.StreamRequestHandler):
    def setup(self) -> None:
        self.timeout = self.server.config.request_timeout
        super().setup()

    def handle(self) -> None:
        peer = "%s:%s" % self.client_address[:2]
        LOGGER.debug("connection from %s", peer)
        engine = DispatchEngine(self.server.table, self.server.registry, wire=self.server.wire)
        try:
            deadline = RequestDeadline(self.server.config.request_timeout, self.connection.settimeout)
            error = engine.serve(self.rfile, self.wfile, deadline=deadline)
        except Exception:
            LOGGER.exception("dispatch loop for %s failed", peer)
            return
        if error is not None:
            LOGGER.info("connection %s closed: %s", peer, error)


class DispatchServer(socketserver.ThreadingTCPServer):
    """One dispatch engine per connection; all engines share the table."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(
        self,
        table: CommandTable,
        registry: FunctionRegistry,
        config: Optional[ServerConfig] = None,
        *,
        wire: WireConfig = DEFAULT_WIRE,
    ) -> None:
        self.config = config or ServerConfig()
        self.table = table
        self.registry = registry
        self.wire = wire
        super().__init__((self.config.host, self.config.port), _DispatchHandler)

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.server_address[:2]
        return str(host), int(port)


__all__ = ["DispatchEngine", "DispatchServer", "EngineState", "RequestDeadline", "ServerConfig"]
