# src/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Any

from src.allocation import AllocationEngine, DistributionLedger, list_active_representatives
from src.config import load_allocation_config, settings
from src.db import get_connection
from src.exceptions import CountTimeoutError, StorageUnavailableError
from src.export.exporter import FORMATS, allocation_filename, export_file
from src.search.backend import CompanySearchParams, SqliteRegistryBackend
from src.search.terms import split_codes
from src.utils import configure_logging

log = logging.getLogger(__name__)


def _section(title: str) -> None:
    """
    Print a simple section heading used by the human-readable output.
    The exact format is asserted in tests.
    """
    print(f"=== {title} ===")


def _connect(args: argparse.Namespace) -> sqlite3.Connection:
    return get_connection(args.db)


def _params(args: argparse.Namespace) -> CompanySearchParams:
    return CompanySearchParams(
        term=args.term,
        page=getattr(args, "page", 1),
        page_size=getattr(args, "page_size", settings.SEARCH_DEFAULT_PAGE_SIZE),
        state=args.state,
        include_secondary=args.include_secondary,
    )


def _target_codes(args: argparse.Namespace) -> tuple[list[str], int]:
    cfg = load_allocation_config()
    codes = cfg.resolve(split_codes(args.codes or ""), args.set)
    limit = args.limit if getattr(args, "limit", None) is not None else cfg.default_limit
    return codes, limit


def _print_companies(rows: list[dict[str, Any]]) -> None:
    if not rows:
        print("  (no companies)")
        return
    header = f"{'id':>8} {'cnpj':18} {'cnae':9} {'state':5} {'phone_1':18} legal_name"
    print("  " + header)
    print("  " + "-" * len(header))
    for r in rows:
        print(
            f"  {r.get('id') or 0:8d} {r.get('cnpj') or '':18} {r.get('primary_cnae') or '':9}"
            f" {r.get('state') or '':5} {r.get('phone_1') or '':18} {r.get('legal_name') or ''}"
        )


def _cmd_search(args: argparse.Namespace) -> int:
    conn = _connect(args)
    try:
        page = SqliteRegistryBackend(conn).search(_params(args))
    finally:
        conn.close()

    if args.json:
        payload = {
            "results": page.rows,
            "page": page.page,
            "page_size": page.page_size,
            "has_more": page.has_more,
        }
        print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))
        return 0

    _section(f"Companies (page {page.page})")
    _print_companies(page.rows)
    print()
    print(f"  More pages: {'yes' if page.has_more else 'no'}")
    return 0


def _cmd_count(args: argparse.Namespace) -> int:
    conn = _connect(args)
    try:
        total = SqliteRegistryBackend(conn).count(_params(args), timeout_sec=args.timeout)
    finally:
        conn.close()
    print(total)
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    conn = _connect(args)
    try:
        page = SqliteRegistryBackend(conn).search(_params(args))
    finally:
        conn.close()
    n = export_file(Path(args.output), page.rows, args.format)
    print(f"[export] wrote {n} rows to {args.output}")
    return 0


def _cmd_reps(args: argparse.Namespace) -> int:
    conn = _connect(args)
    try:
        reps = list_active_representatives(conn)
    finally:
        conn.close()

    _section("Active representatives")
    if not reps:
        print("  (no active representatives)")
        return 0
    for r in reps:
        print(f"  {r.id:6d}  ddd={r.ddd:4}  {r.name}")
    return 0


def _cmd_preview(args: argparse.Namespace) -> int:
    codes, _limit = _target_codes(args)
    conn = _connect(args)
    try:
        previews = AllocationEngine(conn).preview(codes)
    finally:
        conn.close()

    _section(f"Available companies ({', '.join(codes)})")
    if not previews:
        print("  (no active representatives)")
        return 0
    for p in previews:
        rep = p.representative
        print(f"  {rep.name:30} ddd={rep.ddd:4} {p.available:8d}")
    return 0


def _cmd_allocate(args: argparse.Namespace) -> int:
    codes, limit = _target_codes(args)
    conn = _connect(args)
    try:
        run = AllocationEngine(conn).allocate(codes, limit)
    finally:
        conn.close()

    if args.output_dir:
        out_dir = Path(args.output_dir)
        for allocation in run.allocations:
            if not allocation.companies:
                continue
            path = out_dir / allocation_filename(allocation.representative.name, args.format)
            export_file(path, allocation.companies, args.format)
            log.info("wrote %s", path)

    if args.json:
        print(json.dumps(run.to_dict(), indent=2, sort_keys=True, ensure_ascii=False))
        return 0

    _section(f"Allocation {run.exported_at}")
    for allocation in run.allocations:
        rep = allocation.representative
        status = allocation.error or "ok"
        print(f"  {rep.name:30} ddd={rep.ddd:4} {allocation.total:6d}  {status}")
    print()
    print(f"  Grand total: {run.grand_total}")
    return 0


def _cmd_stats(args: argparse.Namespace) -> int:
    conn = _connect(args)
    try:
        stats = DistributionLedger(conn).statistics()
    finally:
        conn.close()

    if args.json:
        print(json.dumps([s.to_dict() for s in stats], indent=2, sort_keys=True))
        return 0

    _section("Distributions per representative")
    if not stats:
        print("  (nothing distributed yet)")
        return 0
    for s in stats:
        print(f"  {s.representative_name:30} {s.total_distributed:8d}  {s.last_distributed_at}")
    return 0


def _add_db(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--db",
        default=None,
        help="SQLite database path (default: DATABASE_URL / DATABASE_PATH / dev.db).",
    )


def _add_filters(p: argparse.ArgumentParser) -> None:
    p.add_argument("term", help="Activity code, comma-separated codes, or description text.")
    p.add_argument("--state", default=None, help="Two-letter region filter, e.g. SP.")
    p.add_argument(
        "--include-secondary",
        action="store_true",
        help="Code searches also match secondary activity codes.",
    )


def _add_paging(p: argparse.ArgumentParser) -> None:
    p.add_argument("--page", type=int, default=1, help="1-based page number (default: 1).")
    p.add_argument(
        "--page-size",
        type=int,
        default=settings.SEARCH_DEFAULT_PAGE_SIZE,
        help=f"Rows per page (default: {settings.SEARCH_DEFAULT_PAGE_SIZE}).",
    )


def _add_targets(p: argparse.ArgumentParser) -> None:
    p.add_argument("--codes", default=None, help="Comma-separated target activity codes.")
    p.add_argument(
        "--set",
        default=None,
        help="Named target set from docs/allocation.yaml (default: real_estate).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cnae-leads",
        description="Search the company registry by activity code and allocate leads.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    search_parser = subparsers.add_parser("search", help="Show one page of matching companies.")
    _add_db(search_parser)
    _add_filters(search_parser)
    _add_paging(search_parser)
    search_parser.add_argument("--json", action="store_true", help="Emit JSON.")
    search_parser.set_defaults(func=_cmd_search)

    count_parser = subparsers.add_parser("count", help="Count matching companies.")
    _add_db(count_parser)
    _add_filters(count_parser)
    count_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help=f"Deadline in seconds (default: {settings.COUNT_TIMEOUT_SEC}; 0 disables).",
    )
    count_parser.set_defaults(func=_cmd_count)

    export_parser = subparsers.add_parser("export", help="Write one page of results to a file.")
    _add_db(export_parser)
    _add_filters(export_parser)
    _add_paging(export_parser)
    export_parser.add_argument("--format", choices=FORMATS, default="xlsx")
    export_parser.add_argument("--output", required=True, help="Output file path.")
    export_parser.set_defaults(func=_cmd_export)

    reps_parser = subparsers.add_parser("reps", help="List active representatives.")
    _add_db(reps_parser)
    reps_parser.set_defaults(func=_cmd_reps)

    preview_parser = subparsers.add_parser(
        "preview",
        help="Show how many companies each representative could still receive.",
    )
    _add_db(preview_parser)
    _add_targets(preview_parser)
    preview_parser.set_defaults(func=_cmd_preview)

    allocate_parser = subparsers.add_parser(
        "allocate",
        help="Hand each active representative a list of undistributed companies.",
    )
    _add_db(allocate_parser)
    _add_targets(allocate_parser)
    allocate_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Companies per representative (default: default_limit from docs/allocation.yaml).",
    )
    allocate_parser.add_argument(
        "--output-dir",
        default=None,
        help="Write one spreadsheet per representative into this directory.",
    )
    allocate_parser.add_argument("--format", choices=FORMATS, default="xlsx")
    allocate_parser.add_argument("--json", action="store_true", help="Emit JSON.")
    allocate_parser.set_defaults(func=_cmd_allocate)

    stats_parser = subparsers.add_parser("stats", help="Distribution totals per representative.")
    _add_db(stats_parser)
    stats_parser.add_argument("--json", action="store_true", help="Emit JSON.")
    stats_parser.set_defaults(func=_cmd_stats)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(settings.LOG_LEVEL, stream=sys.stderr)

    func = getattr(args, "func", None)
    if func is None:
        parser.error("no command specified")
        return 1

    try:
        return int(func(args))
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except (StorageUnavailableError, CountTimeoutError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
