#!/usr/bin/env python3
"""Import an order export (CSV or XLSX) from the command line.

Runs the same engine as POST /api/orders/upload and prints the JSON summary.

Usage:
  python scripts/import_orders.py orders_export.csv
  python scripts/import_orders.py orders_export.xlsx --shop-id <shop_id>
  python scripts/import_orders.py orders_export.csv --dry-run
  python scripts/import_orders.py orders_export.csv --create-missing-shops
"""

from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

if not os.getenv("DATABASE_URL"):
    print("⚠️  DATABASE_URL is not set; importing into a throwaway in-memory database", file=sys.stderr)

from database import init_db
from services.import_errors import OrderImportError
from services.order_importer import OrderImporter
from settings import IMPORT_CREATE_MISSING_SHOPS


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("path", type=Path, help="Order export to import (.csv or .xlsx)")
    parser.add_argument("--shop-id", dest="shop_id", default=None, help="Import every order into this shop")
    parser.add_argument("--dry-run", action="store_true", help="Resolve shops and report, write nothing")
    parser.add_argument(
        "--create-missing-shops",
        action="store_true",
        default=IMPORT_CREATE_MISSING_SHOPS,
        help="Create school and shop for orders whose tags match no shop",
    )
    parser.add_argument("--init-db", action="store_true", help="Create missing tables before importing")
    return parser.parse_args(argv)


async def _import(args: argparse.Namespace) -> Dict[str, Any]:
    if args.init_db:
        await init_db()

    content = args.path.read_bytes()
    content_type, _ = mimetypes.guess_type(args.path.name)
    importer = OrderImporter(create_missing_shops=args.create_missing_shops)
    result = await importer.import_file(
        content,
        args.path.name,
        content_type,
        shop_id=args.shop_id,
        dry_run=args.dry_run,
    )
    return result.to_dict()


def main(argv: List[str] | None = None) -> int:
    args = _parse_args(argv or sys.argv[1:])

    if not args.path.is_file():
        raise SystemExit(f"✗ File not found: {args.path}")

    try:
        summary = asyncio.run(_import(args))
    except OrderImportError as exc:
        print(f"✗ Import rejected: {exc}", file=sys.stderr)
        return 2
    except Exception as exc:
        print(f"✗ Import failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2, ensure_ascii=False, default=str))
    if args.dry_run:
        print("\n🔸 DRY RUN - No changes made", file=sys.stderr)
    else:
        print(
            f"\n✓ Imported {summary['imported']} orders, skipped {summary['skipped']} "
            f"({len(summary.get('errors', []))} errors)",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
