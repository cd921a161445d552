from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from disbursements.application.container import build_container
from disbursements.config import get_app_paths, get_fx_settings
from disbursements.domain.errors import AppError
from disbursements.logging_config import setup_logging

log = logging.getLogger("disbursements.main")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="disbursements", description="Port disbursement accounts (PDA/FDA) back office")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path (defaults to the app data dir)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create or migrate the database")
    sub.add_parser("fx-today", help="Print today's USD/BRL PTAX rate")

    export = sub.add_parser("export-fda", help="Export an FDA ledger to Excel")
    export.add_argument("--tenant", required=True, help="Tenant id")
    export.add_argument("--fda-id", type=int, required=True)
    export.add_argument("--out", type=Path, required=True, help="Destination .xlsx path")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)
    try:
        fx_settings = get_fx_settings()
    except ValidationError as e:
        log.error("config_invalid error=%s", e)
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return 2
    container = build_container(args.db or paths.db_path, fx_settings)

    try:
        if args.command == "init":
            print(f"database ready: {container.repo.db_path} (integrity: {container.repo.integrity_check()})")
        elif args.command == "fx-today":
            rate = container.fx.get_today_rate()
            print(f"USD/BRL {rate.rate} ({rate.source.value}, {rate.timestamp})")
        elif args.command == "export-fda":
            container.reporting.export_fda_excel(args.tenant, args.fda_id, args.out)
            print(f"exported FDA {args.fda_id} to {args.out}")
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
