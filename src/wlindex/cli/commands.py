"""
CLI commands — argparse subcommands for wlindex.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from ..config import ConfigError, CorpusConfig
from ..core.indexer import Indexer
from ..core.logging import configure_logging
from ..core.query import QueryEngine
from ..parsers.errors import ParseError, format_error_chain
from ..parsers.wayland import parse
from ..store.db import Database
from . import formatter


def _get_config(args) -> tuple[CorpusConfig, Path]:
    """Load corpus config from wlindex.yaml in the workspace root."""
    root = Path(args.root).resolve()
    return CorpusConfig.load(root), root


def _get_db(args) -> Database:
    config, root = _get_config(args)
    return Database(config.database_path(root))


def cmd_build(args) -> int:
    """Rebuild the whole database."""
    config, root = _get_config(args)
    db = Database(config.database_path(root))
    try:
        indexer = Indexer(db, root, config=config)
        print(f"Indexing {config.repos_path(root)}...", file=sys.stderr, flush=True)
        stats = indexer.full_rebuild()
    finally:
        db.close()

    if args.json:
        print(json.dumps(asdict(stats), indent=2))
    else:
        print(formatter.format_stats(stats))
    return 0


def cmd_stats(args) -> int:
    """Show index statistics."""
    db = _get_db(args)
    try:
        stats = QueryEngine(db).get_stats()
    finally:
        db.close()

    if args.json:
        print(json.dumps(stats, indent=2, default=str))
    else:
        print(formatter.format_stats(stats))
    return 0


def cmd_parse(args) -> int:
    """Parse one document without touching the database."""
    path = Path(args.file)
    try:
        protocols = parse(args.file, path.read_bytes())
    except (OSError, ParseError) as e:
        print(f"error: {args.file}: {format_error_chain(e)}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([formatter.protocol_to_dict(p) for p in protocols], indent=2))
    else:
        print(formatter.format_protocols(protocols))
    return 0


def cmd_interface(args) -> int:
    """Show an interface and who references it."""
    db = _get_db(args)
    try:
        result = QueryEngine(db).describe(args.name)
    finally:
        db.close()

    if args.json:
        print(json.dumps(result, indent=2, default=str))
    else:
        print(formatter.format_interface(result))
    return 0 if result["interfaces"] else 1


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="wlindex",
        description="Index Wayland protocol definitions into SQLite",
    )
    parser.add_argument(
        "--root", "-r", default=".",
        help="Workspace root holding wlindex.yaml (default: current dir)",
    )
    parser.add_argument(
        "--json", "-j", action="store_true", default=False,
        help="Output as JSON",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Minimum log level (default: INFO)",
    )
    parser.add_argument(
        "--log-json", action="store_true", default=False,
        help="Emit log lines as JSON",
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # build
    sub.add_parser("build", help="Rebuild the database from the configured repos")

    # stats
    sub.add_parser("stats", help="Show index statistics")

    # parse
    p = sub.add_parser("parse", help="Parse a single protocol document")
    p.add_argument("file", help="Path to the XML document")

    # interface
    p = sub.add_parser("interface", help="Show interfaces with this name")
    p.add_argument("name", help="Interface name, e.g. wl_surface")

    return parser


def run_cli(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(level=args.log_level, json_format=args.log_json)

    commands = {
        "build": cmd_build,
        "stats": cmd_stats,
        "parse": cmd_parse,
        "interface": cmd_interface,
    }

    try:
        return commands[args.command](args)
    except (ConfigError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
