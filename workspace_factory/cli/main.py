"""
Top-level CLI dispatcher: workspace-factory <command> [args...].
Commands: doctor (preflight, read-only), init (select backend, create/migrate schema).
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if args.connection_string is not None:
        out["connection_string"] = args.connection_string
    if args.data_path is not None:
        out["data_path"] = args.data_path
    if args.model is not None:
        out["model"] = args.model
    return out


def _main_doctor(args: argparse.Namespace) -> int:
    from workspace_factory.doctor import main as doctor_main

    return doctor_main(**_overrides(args))


def _main_init(args: argparse.Namespace) -> int:
    from workspace_factory.config import load_settings
    from workspace_factory.factory import WorkspaceFactory

    try:
        factory = WorkspaceFactory(load_settings(**_overrides(args)))
        descriptor = factory.descriptor
    except Exception as e:
        print(f"init failed: {e}", file=sys.stderr)
        return 1
    print(f"Backend: {descriptor.kind.value}")
    if descriptor.kind.is_relational:
        print(f"Schema version: {factory.current_db_version}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = argparse.ArgumentParser(
        prog="workspace-factory",
        description="Storage backend selection and schema lifecycle",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG logging")
    parser.add_argument("--connection-string", default=None, help="Override the configured connection string")
    parser.add_argument("--data-path", default=None, help="Override the data path (migration marker location)")
    parser.add_argument("--model", default=None, help="Expected schema as package.module:metadata")
    subparsers = parser.add_subparsers(dest="command", help="command")
    subparsers.add_parser("doctor", help="Preflight checks; changes nothing")
    subparsers.add_parser("init", help="Select the backend and create or migrate the schema")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "doctor":
        return _main_doctor(args)
    if args.command == "init":
        return _main_init(args)
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
