"""Exception taxonomy shared by the cmdtab build pipeline and runtime."""

from __future__ import annotations

from typing import Optional

from cmdtab import wire_constants as wire_const


class CmdTabError(Exception):
    """Base class for cmdtab failures."""

    default_code: Optional[int] = None

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = self.default_code if code is None else code


# ---------------------------------------------------------------------------
# Build time


class SymbolNotFoundError(CmdTabError):
    """The export region start marker is absent from the symbol table."""

    def __init__(self, marker: str) -> None:
        super().__init__(f"start marker '{marker}' not found in symbol table")
        self.marker = marker


class SymbolExtractionError(CmdTabError):
    """Reading the symbol table from a compiled artifact failed."""


class TableLayoutError(CmdTabError):
    """The export region is not a dense, slot-aligned array."""


class DuplicateOffsetError(TableLayoutError):
    """Two exported symbols resolve to the same table offset."""

    def __init__(self, offset: int, first: str, second: str) -> None:
        super().__init__(f"offset 0x{offset:X} shared by '{first}' and '{second}'")
        self.offset = offset
        self.symbols = (first, second)


class UnsupportedTypeError(CmdTabError):
    """A type token has no mapping in the descriptor vocabulary."""

    default_code = wire_const.Status.EUNSUPPORTED

    def __init__(self, token: str, *, symbol: Optional[str] = None, reason: Optional[str] = None) -> None:
        detail = reason or f"unsupported type '{token}'"
        message = f"{symbol}: {detail}" if symbol else detail
        super().__init__(message)
        self.token = token
        self.symbol = symbol
        self.reason = detail


# ---------------------------------------------------------------------------
# Runtime


class CodecError(CmdTabError, ValueError):
    """A value does not fit the descriptor it is encoded or decoded with."""

    default_code = wire_const.Status.EINVAL


class TruncatedFrameError(CmdTabError):
    """A frame declares more bytes than the stream holds."""

    default_code = wire_const.Status.ETRUNC


class OutOfRangeError(CmdTabError, IndexError):
    """A command number falls outside the command table."""

    default_code = wire_const.Status.ERANGE

    def __init__(self, command_number: int, table_length: int) -> None:
        super().__init__(f"command {command_number} out of range (table has {table_length} entries)")
        self.command_number = command_number
        self.table_length = table_length


class DispatchTimeoutError(CmdTabError, TimeoutError):
    """No complete request arrived within the per-request timeout."""

    default_code = wire_const.Status.ETIMEDOUT


class ApplicationError(CmdTabError):
    """Wraps an exception raised by an invoked function."""

    default_code = wire_const.Status.EAPP

    def __init__(self, command_number: int, cause: BaseException) -> None:
        super().__init__(f"command {command_number} failed: {type(cause).__name__}: {cause}")
        self.command_number = command_number
        self.cause = cause


class RemoteError(CmdTabError):
    """Client side view of an error response frame."""

    def __init__(self, code: int, message: str) -> None:
        name = wire_const.status_name(code)
        super().__init__(f"{name}: {message}" if message else name, code=code)
        self.remote_message = message


__all__ = [
    "ApplicationError",
    "CmdTabError",
    "CodecError",
    "DispatchTimeoutError",
    "DuplicateOffsetError",
    "OutOfRangeError",
    "RemoteError",
    "SymbolExtractionError",
    "SymbolNotFoundError",
    "TableLayoutError",
    "TruncatedFrameError",
    "UnsupportedTypeError",
]
