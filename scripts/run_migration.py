"""
Run a catalog migration from CLI.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from app.migration.failures import MigrationSetupError
from app.migration.products import load_products
from app.services.migration_service import MigrationService


async def _run(args: argparse.Namespace) -> int:
    service = MigrationService()
    try:
        if args.check_webhook:
            step = service.build_webhook_step()
            reachable = await step.check_connection()
            print(json.dumps({"webhook_reachable": reachable}, indent=2))
            return 0 if reachable else 1

        products = load_products(args.products)
        summary = await service.migrate(products, mode=args.mode, account_key=args.account)
    finally:
        await service.close()

    payload = {
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "results": [
            {
                "unit_id": result.unit_id,
                "title": result.title,
                "status": result.status,
                "attempts": result.attempts,
                "reason": result.reason,
                "message": result.message,
                "destination_url": result.destination_url,
            }
            for result in summary.results
        ],
    }
    print(json.dumps(payload, indent=2))
    return 0 if summary.failed == 0 else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Migrate products to the destination marketplace.")
    parser.add_argument(
        "--products",
        dest="products",
        default=None,
        help="Path to a JSON array of source product records.",
    )
    parser.add_argument(
        "--mode",
        dest="mode",
        choices=["browser", "webhook"],
        default=None,
        help="Delivery mode. Defaults to MIGRATION_DELIVERY_MODE.",
    )
    parser.add_argument(
        "--account",
        dest="account",
        default=None,
        help="Destination account key. Defaults to DESTINATION_ACCOUNT_KEY.",
    )
    parser.add_argument(
        "--check-webhook",
        dest="check_webhook",
        action="store_true",
        help="Only post a test ping to WEBHOOK_URL and report reachability.",
    )
    args = parser.parse_args()
    if not args.check_webhook and not args.products:
        parser.error("--products is required unless --check-webhook is given.")

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        return asyncio.run(_run(args))
    except (MigrationSetupError, FileNotFoundError, ValueError) as exc:
        print(json.dumps({"error": str(exc)}, indent=2), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
