#!/usr/bin/env python3
"""
fintrack CLI - transaction import and multi-currency ledger command line.

Usage:
    fintrack --user u1 --org o1 asset-create --name "Everyday" --currency AUD --amount 1000
    fintrack --user u1 --org o1 preview statement.csv
    fintrack --user u1 --org o1 import statement.csv --asset 1 --date-col Date --desc-col Desc --amount-col Amt
    fintrack --user u1 --org o1 history
    fintrack --user u1 --org o1 convert 100 USD AUD
    fintrack --user u1 --org o1 budget budget.json --currency AUD
"""

import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from fintrack.core.assets import AssetService
from fintrack.core.config import Settings, load_settings
from fintrack.core.database import DatabaseManager
from fintrack.core.exceptions import FintrackError
from fintrack.core.models import AssetType
from fintrack.core.transaction_service import TransactionService
from fintrack.parsers.column_mapping import ColumnMapping
from fintrack.services.budget_service import BudgetConversionAggregator, BudgetItem
from fintrack.services.currency import ExchangeRateCache, ExchangeRateProvider
from fintrack.services.imports import ImportOptions, ImportService, UploadedFile

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, debug: bool = False):
    """Configure logging."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def emit(data: Any) -> None:
    """Print a JSON document to stdout."""
    print(json.dumps(data, indent=2, default=str))


def decimal_arg(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def build_rate_cache(conn, settings: Settings) -> ExchangeRateCache:
    provider = ExchangeRateProvider(
        api_url=settings.rates.api_url,
        timeout=settings.rates.timeout_seconds,
    )
    return ExchangeRateCache(
        conn,
        provider,
        ttl_hours=settings.rates.cache_ttl_hours,
        supported_currencies=settings.rates.supported_currencies,
    )


# ============================================================================
# Command Handlers
# ============================================================================

def cmd_asset_create(args, conn, settings: Settings) -> int:
    asset = AssetService(conn).create(
        user_id=args.user,
        organization_id=args.org,
        name=args.name,
        currency=args.currency,
        amount=args.amount,
        asset_type=AssetType(args.type),
        country=args.country,
        family_id=args.family,
    )
    emit(asset.to_dict())
    return 0


def cmd_asset_show(args, conn, settings: Settings) -> int:
    assets = AssetService(conn)
    asset = assets.get(args.asset_id, args.org)
    transactions = TransactionService(conn).list_for_asset(asset.id, args.org, limit=args.limit)
    emit({
        **asset.to_dict(),
        "valuations": [
            {"date": v.date.isoformat(), "value": str(v.value), "source": v.source}
            for v in assets.list_valuations(asset.id, args.org)
        ],
        "transactions": [t.to_dict() for t in transactions],
    })
    return 0


def cmd_valuation(args, conn, settings: Settings) -> int:
    valuation = AssetService(conn).add_valuation(
        args.asset_id,
        args.value,
        user_id=args.user,
        organization_id=args.org,
        valuation_date=date.fromisoformat(args.date) if args.date else None,
    )
    emit({"assetId": valuation.asset_id, "value": str(valuation.value), "date": valuation.date.isoformat()})
    return 0


def cmd_preview(args, conn, settings: Settings) -> int:
    service = ImportService(conn, settings.imports)
    emit(service.preview(UploadedFile.from_path(args.file), sheet_name=args.sheet))
    return 0


def cmd_import(args, conn, settings: Settings) -> int:
    service = ImportService(
        conn,
        settings.imports,
        transaction_service=TransactionService(conn, write_retries=settings.write_retries),
    )
    upload = UploadedFile.from_path(args.file)

    mapping = ColumnMapping(
        date=args.date_col,
        description=args.desc_col,
        amount=args.amount_col,
        currency=args.currency_col,
        category=args.category_col,
        type=args.type_col,
    )
    if not mapping.is_complete:
        # Fill unmapped fields from the header suggestion
        suggested = service.preview(upload, sheet_name=args.sheet)["suggestedMapping"]
        mapping = ColumnMapping.from_dict({**suggested, **mapping.to_dict()})
        logger.info(f"Using column mapping {mapping.to_dict()}")

    options = ImportOptions(
        asset_id=args.asset,
        column_mapping=mapping,
        date_format=args.date_format,
        skip_duplicates=not args.keep_duplicates,
        sheet_name=args.sheet,
    )
    result = service.commit(upload, user_id=args.user, organization_id=args.org, options=options)
    emit(result.to_dict())
    return 0


def cmd_history(args, conn, settings: Settings) -> int:
    service = ImportService(conn, settings.imports)
    if args.id is not None:
        emit(service.get_import(args.id, args.org))
    else:
        user_id = args.user if args.mine else None
        emit([h.to_dict() for h in service.list_history(args.org, user_id=user_id, limit=args.limit)])
    return 0


def cmd_rates(args, conn, settings: Settings) -> int:
    cache = build_rate_cache(conn, settings)
    if args.info:
        emit(cache.get_cache_info(args.base))
    else:
        emit(cache.get_rates(args.base))
    return 0


def cmd_rates_refresh(args, conn, settings: Settings) -> int:
    results = build_rate_cache(conn, settings).refresh_rates(args.currencies or None)
    emit(results)
    return 0 if all(results.values()) else 1


def cmd_convert(args, conn, settings: Settings) -> int:
    details = build_rate_cache(conn, settings).get_conversion_details(args.amount, args.source, args.target)
    emit({"amount": str(args.amount), "from": args.source.upper(), "to": args.target.upper(), **details})
    return 0


def cmd_budget(args, conn, settings: Settings) -> int:
    with open(args.file, "r", encoding="utf-8") as f:
        data = json.load(f)

    items = [BudgetItem.from_dict(item) for item in data.get("items", [])]
    aggregator = BudgetConversionAggregator(build_rate_cache(conn, settings))
    summary = aggregator.summarize(
        items,
        monthly_income=Decimal(str(data.get("monthlyIncome", "0"))),
        income_currency=data.get("incomeCurrency", args.currency),
        reporting_currency=args.currency,
        budget={k: v for k, v in data.items() if k not in ("items", "monthlyIncome", "incomeCurrency")},
    )
    emit(summary.to_dict())
    return 0


COMMANDS = {
    "asset-create": cmd_asset_create,
    "asset-show": cmd_asset_show,
    "valuation": cmd_valuation,
    "preview": cmd_preview,
    "import": cmd_import,
    "history": cmd_history,
    "rates": cmd_rates,
    "rates-refresh": cmd_rates_refresh,
    "convert": cmd_convert,
    "budget": cmd_budget,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fintrack",
        description="fintrack - transaction import and multi-currency ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fintrack -u u1 -o o1 asset-create --name Everyday --currency AUD --amount 1000
  fintrack -u u1 -o o1 import jan.csv --asset 1 --date-col Date --desc-col Desc --amount-col Amt
  fintrack -u u1 -o o1 history --limit 5
  fintrack -u u1 -o o1 convert 100 USD AUD
        """,
    )

    # Global arguments
    parser.add_argument("--user", "-u", required=True, help="Acting user id")
    parser.add_argument("--org", "-o", required=True, help="Organization id")
    parser.add_argument("--db", help="Database path (default: from settings)")
    parser.add_argument("--config", help="Settings JSON file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--debug", action="store_true", help="Debug output")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    p = subparsers.add_parser("asset-create", help="Create an asset")
    p.add_argument("--name", required=True)
    p.add_argument("--currency", required=True)
    p.add_argument("--amount", type=decimal_arg, default=Decimal("0"), help="Opening balance")
    p.add_argument("--type", default="CASH", choices=[t.value for t in AssetType])
    p.add_argument("--country")
    p.add_argument("--family", help="Family id (asset is then family-owned)")

    p = subparsers.add_parser("asset-show", help="Show an asset with recent transactions")
    p.add_argument("asset_id", type=int)
    p.add_argument("--limit", type=int, default=20)

    p = subparsers.add_parser("valuation", help="Record a valuation for an asset")
    p.add_argument("asset_id", type=int)
    p.add_argument("value", type=decimal_arg)
    p.add_argument("--date", help="Valuation date (YYYY-MM-DD, default: today)")

    p = subparsers.add_parser("preview", help="Preview an import file")
    p.add_argument("file")
    p.add_argument("--sheet", help="Sheet name for workbooks")

    p = subparsers.add_parser("import", help="Import transactions from a CSV or Excel file")
    p.add_argument("file")
    p.add_argument("--asset", type=int, required=True, help="Target asset id")
    p.add_argument("--date-col")
    p.add_argument("--desc-col")
    p.add_argument("--amount-col")
    p.add_argument("--currency-col")
    p.add_argument("--category-col")
    p.add_argument("--type-col")
    p.add_argument("--date-format", help="e.g. dd/MM/yyyy or %%d/%%m/%%Y")
    p.add_argument("--sheet", help="Sheet name for workbooks")
    p.add_argument("--keep-duplicates", action="store_true", help="Import rows matching existing transactions")

    p = subparsers.add_parser("history", help="Show import history")
    p.add_argument("--id", type=int, help="Show one import with its transactions")
    p.add_argument("--limit", type=int, default=10)
    p.add_argument("--mine", action="store_true", help="Only imports by --user")

    p = subparsers.add_parser("rates", help="Show exchange rates for a base currency")
    p.add_argument("base")
    p.add_argument("--info", action="store_true", help="Show cache status instead of rates")

    p = subparsers.add_parser("rates-refresh", help="Refresh cached rates")
    p.add_argument("currencies", nargs="*")

    p = subparsers.add_parser("convert", help="Convert an amount between currencies")
    p.add_argument("amount", type=decimal_arg)
    p.add_argument("source")
    p.add_argument("target")

    p = subparsers.add_parser("budget", help="Summarize a budget JSON file in one currency")
    p.add_argument("file")
    p.add_argument("--currency", default="AUD", help="Reporting currency")

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose, args.debug)
    settings = load_settings(args.config)

    db = DatabaseManager()
    try:
        conn = db.init(args.db or settings.db_path)
    except FintrackError as e:
        print(f"Database error: {e}", file=sys.stderr)
        return 1

    try:
        return COMMANDS[args.command](args, conn, settings)
    except FintrackError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
