"""Manual sync runner for operating and debugging the sync engine.

Runs the same service the API uses, against the store configured in .env,
and prints a readable summary.

Usage:
    python scripts/run_sync.py channels
    python scripts/run_sync.py publish --channels "Google & YouTube" TikTok --ids 123 456
    python scripts/run_sync.py attributes --ids 123 --color Black --gender male
    python scripts/run_sync.py auto-attributes --ids 123 456
    python scripts/run_sync.py export-start
    python scripts/run_sync.py export-status [--operation-id gid://shopify/BulkOperation/1]
    python scripts/run_sync.py export-process --operation-id gid://... --channels TikTok
    python scripts/run_sync.py new-products --lookback 60
"""

import argparse
import asyncio
import os
import sys

# Add backend to path so we can import channelsync modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from channelsync.core.exceptions import ChannelSyncException
from channelsync.sync.factory import get_sync_factory
from channelsync.sync.models import AttributeSet, BatchOutcome, BatchProgress
from channelsync.sync.sync_service import ProductSyncService


def _print_progress(progress: BatchProgress) -> None:
    print(
        f"  batch {progress.batch_number}/{progress.total_batches}: "
        f"{progress.success_count} ok, {progress.failure_count} failed"
    )


def _print_outcome(outcome: BatchOutcome) -> None:
    print(f"\n{'='*70}")
    print("  Summary")
    print(f"{'='*70}")
    print(f"  {outcome.message.replace(chr(10), chr(10) + '  ')}")
    if outcome.failed_ids:
        print(f"  Failed ids: {', '.join(outcome.failed_ids[:20])}")
        if len(outcome.failed_ids) > 20:
            print(f"  ... and {len(outcome.failed_ids) - 20} more")
    print(f"{'='*70}\n")


async def run(args: argparse.Namespace) -> int:
    """Dispatch one command.

    Returns:
        Process exit code
    """
    service = ProductSyncService()
    try:
        if args.command == "channels":
            for name in await service.list_sales_channels(refresh=True):
                print(f"  - {name}")

        elif args.command == "publish":
            outcome = await service.bulk_update_sales_channels(
                args.ids, args.channels, on_progress=_print_progress
            )
            _print_outcome(outcome)
            return 0 if outcome.success else 1

        elif args.command == "attributes":
            attributes = AttributeSet(
                category=args.category,
                color=args.color,
                size=args.size,
                gender=args.gender,
                age_group=args.age_group,
            )
            outcome = await service.bulk_update_attributes(
                args.ids, attributes, on_progress=_print_progress
            )
            _print_outcome(outcome)
            return 0 if outcome.success else 1

        elif args.command == "auto-attributes":
            outcome = await service.auto_update_attributes(args.ids, on_progress=_print_progress)
            _print_outcome(outcome)
            return 0 if outcome.success else 1

        elif args.command == "export-start":
            handle = await service.start_catalog_export()
            print(f"Started bulk operation {handle.operation_id} ({handle.status.value})")

        elif args.command == "export-status":
            handle = await service.check_catalog_export(args.operation_id)
            if handle is None:
                print("No bulk operation found")
                return 1
            print(f"{handle.operation_id}: {handle.status.value} ({handle.object_count or 0} objects)")

        elif args.command == "export-process":
            result = await service.process_catalog_export(
                args.operation_id, args.channels, on_progress=_print_progress
            )
            if not result["ready"]:
                print(f"Bulk operation is still {result['operation']['status']}, try again later")
                return 1
            print(f"Malformed lines: {result['malformedLines']}, truncated: {result['truncated']}")
            print(result["result"]["message"])
            return 0 if result["result"]["success"] else 1

        elif args.command == "new-products":
            outcome = await service.publish_new_products(args.lookback)
            if outcome is None:
                print("No new products")
            else:
                _print_outcome(outcome)

    except ChannelSyncException as e:
        print(f"\n❌ {type(e).__name__}: {e.message}\n")
        return 2
    finally:
        await get_sync_factory().close()

    return 0


def main():
    """Parse arguments and run the command."""
    parser = argparse.ArgumentParser(
        description="Run sync operations against the configured store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("channels", help="List sales channels")

    publish = sub.add_parser("publish", help="Publish products to sales channels")
    publish.add_argument("--ids", nargs="+", required=True, help="Product ids")
    publish.add_argument("--channels", nargs="+", required=True, help="Sales channel names")

    attrs = sub.add_parser("attributes", help="Set marketplace attributes")
    attrs.add_argument("--ids", nargs="+", required=True, help="Product ids")
    attrs.add_argument("--category")
    attrs.add_argument("--color")
    attrs.add_argument("--size")
    attrs.add_argument("--gender")
    attrs.add_argument("--age-group")

    auto = sub.add_parser("auto-attributes", help="Detect and set attributes from titles")
    auto.add_argument("--ids", nargs="+", required=True, help="Product ids")

    sub.add_parser("export-start", help="Start a catalog-wide bulk export")

    status = sub.add_parser("export-status", help="Check a bulk export")
    status.add_argument("--operation-id", help="Defaults to the most recent operation")

    process = sub.add_parser("export-process", help="Publish every product of a completed export")
    process.add_argument("--operation-id", required=True)
    process.add_argument("--channels", nargs="+", required=True, help="Sales channel names")

    new = sub.add_parser("new-products", help="Publish recently created products")
    new.add_argument("--lookback", type=int, default=15, help="Minutes to look back (default: 15)")

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
