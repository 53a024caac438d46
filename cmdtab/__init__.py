"""
cmdtab: command tables built from a binary's exported symbols.

The table builder reads the symbols that ``CMDTAB_EXPORT`` places in the
export region (see ``cmdtab/include/cmdtab_export.h``), translates their
signatures and orders them by address.  ``cmdtab-gen`` turns the table into
caller bindings; ``cmdtab-serve`` dispatches framed requests against it.
"""

from __future__ import annotations

from .codec import DEFAULT_WIRE, WireConfig, decode_value, encode_value
from .descriptors import Signature, TypeDescriptor, TypeKind
from .dispatch import DispatchEngine, DispatchServer, ServerConfig
from .errors import CmdTabError
from .exporter import ExportRegion
from .table import CommandTable, build_table, load_table, write_table

__all__ = [
    "CmdTabError",
    "CommandTable",
    "DEFAULT_WIRE",
    "DispatchEngine",
    "DispatchServer",
    "ExportRegion",
    "ServerConfig",
    "Signature",
    "TypeDescriptor",
    "TypeKind",
    "WireConfig",
    "build_table",
    "decode_value",
    "encode_value",
    "load_table",
    "write_table",
]
__version__ = "0.1.0"
