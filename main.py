"""
main.py - Pipeline orchestration and CLI for the reconciliation engine.

run_reconciliation() is the one entry point every surface uses:
1. parse   (both sides)
2. match
3. aggregate
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from aggregate import aggregate
from importer import import_file
from links import ManualLinkMap
from logging_config import get_logger, setup_logging
from match import run_matching
from models import AggregateResult, MatchSettings, Side
from parse import parse_transactions
from report import export_workbook

logger = get_logger("recon")

TABLE_EXTENSIONS = {".csv", ".xlsx"}


def _configure_output_symbols() -> tuple[str, str]:
    """Configure stdout encoding and return safe line/fail symbols."""
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except (AttributeError, ValueError, OSError):
        pass

    try:
        "═✗".encode(sys.stdout.encoding or "utf-8")
        return "═", "✗"
    except (LookupError, UnicodeEncodeError):
        return "=", "X"


BOX_CHAR, FAIL_CHAR = _configure_output_symbols()


def run_reconciliation(
    company_raw: Optional[str],
    restaurant_raw: Optional[str],
    manual_links: Optional[Mapping[str, str]] = None,
    settings: Optional[MatchSettings] = None,
) -> AggregateResult:
    """Reconcile two raw ledgers. Pure: same inputs, same result."""
    pipeline_start = time.time()
    settings = settings or MatchSettings()

    stage_start = time.time()
    company = parse_transactions(company_raw, Side.COMPANY)
    restaurant = parse_transactions(restaurant_raw, Side.RESTAURANT)
    parse_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=1/3 | name=parse | company=%s | restaurant=%s | duration_s=%.3f",
        len(company),
        len(restaurant),
        parse_time,
    )

    stage_start = time.time()
    outcome = run_matching(company, restaurant, manual_links or {}, settings)
    match_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=2/3 | name=match | variances=%s | duration_s=%.3f",
        len(outcome.linked_variances),
        match_time,
    )

    stage_start = time.time()
    result = aggregate(outcome)
    aggregate_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=3/3 | name=aggregate | match_pct=%s | duration_s=%.3f",
        result.match_percentage,
        aggregate_time,
    )

    logger.info(
        "pipeline_complete | total_duration_s=%.3f | status=%s",
        time.time() - pipeline_start,
        result.status.value,
    )
    return result


def read_side(path: str) -> str:
    """Read one side's input: tables go through the importer, anything else is raw text."""
    if path is None or not str(path).strip():
        raise ValueError("input path cannot be empty")

    source = Path(str(path).strip())
    if not source.exists():
        raise FileNotFoundError(f"Input file not found: {source}")

    if source.suffix.lower() in TABLE_EXTENSIONS:
        return import_file(source)

    try:
        return source.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        logger.warning(
            "input_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
            source,
        )
        return source.read_text(encoding="latin-1")


def read_links(path: Optional[str]) -> ManualLinkMap:
    """Load manual links from a JSON object file ({company_id: restaurant_id})."""
    if not path:
        return ManualLinkMap()

    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Links file not found: {source}")
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Links file is not valid JSON: {source}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Links file must hold a JSON object, got {type(data).__name__}")
    return ManualLinkMap.from_dict(data)


def _print_summary(result: AggregateResult) -> None:
    """Print a formatted daily summary and headline figures."""
    print(f"\n{BOX_CHAR * 60}")
    print(f"  RECONCILIATION - status: {result.status.value.upper()}")
    print(f"{BOX_CHAR * 60}")
    print()
    print(f"  {'Date':<12} {'Company':>14} {'Restaurant':>14} {'Variance':>14}")
    print(f"  {'─' * 12} {'─' * 14} {'─' * 14} {'─' * 14}")
    for row in result.summary:
        print(
            f"  {row.date:<12} {row.company_total:>14,.2f} "
            f"{row.restaurant_total:>14,.2f} {row.variance:>14,.2f}"
        )
    print(f"  {'─' * 12} {'─' * 14} {'─' * 14} {'─' * 14}")
    print(
        f"  {'Total':<12} {result.grand_total_company:>14,.2f} "
        f"{result.grand_total_restaurant:>14,.2f} {result.total_variance:>14,.2f}"
    )
    print()
    print(f"  Matched:            {result.match_percentage}%")
    print(f"  Unmatched company:  {len(result.unmatched_company)}")
    print(f"  Unmatched other:    {len(result.unmatched_restaurant)}")
    print(f"  Linked variances:   {len(result.linked_variances)}")

    if result.linked_variances:
        print()
        print("  Linked variances:")
        for linked in result.linked_variances:
            print(
                f"    {linked.company.match_id or '-':<8} {linked.company.ref:<20} "
                f"{linked.company.amount:>12,.2f} vs {linked.restaurant.amount:>12,.2f} "
                f"({linked.variance:+,.2f})"
            )

    for label, unmatched in (
        ("company", result.unmatched_company),
        ("restaurant", result.unmatched_restaurant),
    ):
        if not unmatched:
            continue
        print()
        print(f"  {FAIL_CHAR} Unmatched {label}:")
        for txn in unmatched:
            print(f"    {txn.id:<8} {txn.date or '-':<12} {txn.ref:<20} {txn.amount:>12,.2f}")

    print()
    print(f"{BOX_CHAR * 60}")


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for the reconciliation engine."""
    load_dotenv()
    parser = argparse.ArgumentParser(
        prog="recon",
        description=(
            "Ledger Reconciliation\n"
            "Matches a company ledger against a restaurant/bank ledger and "
            "reports daily and total variances."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s --company company.txt --restaurant bank.txt\n"
            "  %(prog)s -c company.csv -r bank.xlsx --strict-date --json\n"
            "  %(prog)s -c company.txt -r bank.txt --links links.json --export recon.xlsx\n"
        ),
    )
    parser.add_argument(
        "--company",
        "-c",
        type=str,
        required=True,
        help="Company ledger: raw text, or .csv/.xlsx table (required)",
    )
    parser.add_argument(
        "--restaurant",
        "-r",
        type=str,
        required=True,
        help="Restaurant/bank ledger: raw text, or .csv/.xlsx table (required)",
    )
    parser.add_argument(
        "--links",
        "-l",
        type=str,
        help="JSON file of manual links {company_id: restaurant_id}",
    )
    parser.add_argument(
        "--no-match-by-ref",
        action="store_true",
        help="Disable reference matching across amount differences",
    )
    parser.add_argument(
        "--strict-date",
        action="store_true",
        help="Only match by amount when the dates are identical",
    )
    parser.add_argument(
        "--export",
        "-e",
        type=str,
        help="Write the three-sheet .xlsx report to this path",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG-level) logging",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output the full result as JSON instead of the summary table",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON lines (for production/log aggregation)",
    )

    args = parser.parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=args.log_json,
    )

    try:
        settings = MatchSettings(
            match_by_ref=not args.no_match_by_ref,
            strict_date=args.strict_date,
        )
        logger.info(
            "cli_start | company=%s | restaurant=%s | links=%s",
            args.company,
            args.restaurant,
            args.links,
        )
        result = run_reconciliation(
            read_side(args.company),
            read_side(args.restaurant),
            read_links(args.links),
            settings,
        )

        if args.export:
            export_workbook(result, args.export)

        if args.json:
            print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
        else:
            _print_summary(result)
    except FileNotFoundError as exc:
        logger.error("cli_error | type=FileNotFoundError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except ValueError as exc:
        logger.error("cli_error | type=ValueError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(130)
    except Exception as exc:
        logger.error(
            "cli_error | type=%s | error=%s",
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        print(f"\nUnexpected error: {exc}")
        print("Run with --verbose for full traceback.")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
