"""Command line entry points: ``cmdtab-gen`` and ``cmdtab-serve``."""

from __future__ import annotations

import argparse
import ctypes
import importlib
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from cmdtab.dispatch import DispatchServer, ServerConfig
from cmdtab.errors import CmdTabError, SymbolExtractionError, SymbolNotFoundError, TableLayoutError
from cmdtab.exporter import ExportRegion
from cmdtab.registry import FunctionRegistry, NativeRegistry
from cmdtab.stubgen import generate_stubs, rejection_report, table_listing
from cmdtab.symbols import load_symbols
from cmdtab.table import (
    DEFAULT_MARKER,
    DEFAULT_PREFIX,
    DEFAULT_SLOT_WIDTH,
    CommandTable,
    build_table,
    load_table,
    write_table,
)

LOG = logging.getLogger("cmdtab.cli")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _add_log_level(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        default=os.environ.get("CMDTAB_LOG", "INFO"),
        help="Logging level (default from CMDTAB_LOG, else INFO)",
    )


# ---------------------------------------------------------------------------
# cmdtab-gen


def build_gen_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdtab-gen",
        description="Build the command table from a binary's symbols and emit caller bindings",
    )
    parser.add_argument("input", help="Compiled artifact or pre-extracted symbol dump")
    parser.add_argument("-o", "--output", help="Write generated bindings here (default: stdout)")
    parser.add_argument("--table-json", help="Also write the command table as JSON")
    parser.add_argument("--prefix", default=os.environ.get("CMDTAB_PREFIX", DEFAULT_PREFIX), help="Export name prefix")
    parser.add_argument("--marker", default=os.environ.get("CMDTAB_MARKER", DEFAULT_MARKER), help="Region start marker symbol")
    parser.add_argument("--slot-width", type=int, default=DEFAULT_SLOT_WIDTH, help="Bytes per region slot")
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the command table to stdout instead of the bindings (-o still writes them)",
    )
    kind = parser.add_mutually_exclusive_group()
    kind.add_argument("--dump", dest="dump", action="store_true", default=None, help="Treat input as a symbol dump")
    kind.add_argument("--artifact", dest="dump", action="store_false", help="Treat input as a compiled artifact")
    parser.set_defaults(dump=None)
    _add_log_level(parser)
    return parser


def gen_main(argv: Optional[List[str]] = None) -> int:
    args = build_gen_parser().parse_args(argv)
    _configure_logging(args.log_level)
    try:
        symbols = load_symbols(args.input, dump=args.dump)
        table = build_table(symbols, prefix=args.prefix, marker=args.marker, slot_width=args.slot_width)
    except (SymbolNotFoundError, TableLayoutError, SymbolExtractionError, OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    for line in rejection_report(table):
        print(line, file=sys.stderr)

    source = generate_stubs(table)
    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(source, encoding="utf-8")
        print(f"Wrote {output} ({len(table.accepted)} bindings, {len(table.rejected)} rejected)", file=sys.stderr)
    elif not args.list:
        sys.stdout.write(source)
    if args.list:
        print(table_listing(table))
    if args.table_json:
        path = write_table(table, args.table_json)
        print(f"Wrote {path}", file=sys.stderr)
    return 0


# ---------------------------------------------------------------------------
# cmdtab-serve


def build_serve_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cmdtab-serve", description="Serve a command table over TCP")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--module", help="Python module exposing an ExportRegion")
    source.add_argument("--library", help="Shared library exporting the region start marker")
    parser.add_argument("--region", default="REGION", help="ExportRegion attribute name in --module")
    parser.add_argument("--table", help="Command table JSON (required with --library)")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=9990, help="Bind port")
    parser.add_argument("--timeout", type=float, default=30.0, help="Per-request receive timeout in seconds (0 disables)")
    _add_log_level(parser)
    return parser


def _load_region(module_name: str, attribute: str) -> ExportRegion:
    module = importlib.import_module(module_name)
    region = getattr(module, attribute, None)
    if not isinstance(region, ExportRegion):
        raise CmdTabError(f"{module_name}.{attribute} is not an ExportRegion")
    return region


def _check_same_layout(built: CommandTable, loaded: CommandTable) -> None:
    built_symbols = [entry.symbol.demangled for entry in built]
    loaded_symbols = [entry.symbol.demangled for entry in loaded]
    if built_symbols != loaded_symbols:
        raise TableLayoutError("table file does not match the exported region")


def load_server_table(args: argparse.Namespace) -> Tuple[CommandTable, FunctionRegistry]:
    if args.library:
        if not args.table:
            raise CmdTabError("--library requires --table")
        table = load_table(args.table)
        return table, NativeRegistry.from_library(ctypes.CDLL(args.library), table)
    region = _load_region(args.module, args.region)
    table = region.build_table()
    if args.table:
        _check_same_layout(table, load_table(args.table))
    return table, region.registry()


def serve_main(argv: Optional[List[str]] = None) -> int:
    args = build_serve_parser().parse_args(argv)
    _configure_logging(args.log_level)
    try:
        table, registry = load_server_table(args)
    except (CmdTabError, ImportError, OSError, ValueError, KeyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    config = ServerConfig(host=args.host, port=args.port, request_timeout=args.timeout or None)
    server = DispatchServer(table, registry, config)
    host, port = server.address
    LOG.info("serving %d commands on %s:%d", len(table), host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print()
    finally:
        server.server_close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(gen_main())
