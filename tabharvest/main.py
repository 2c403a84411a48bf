"""
Main entry point for tabharvest.

Usage:
    python -m tabharvest.main summary --address "100 Main St"
    python -m tabharvest.main summary --page https://app.propertymeld.com/.../melds/new-meld/?for_unit=42
    python -m tabharvest.main invoices --listing https://app.propertymeld.com/.../melds/payments/
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from tabharvest.browser.connection import BrowserConnection
from tabharvest.commands import (
    BuildSummaryFromUrl,
    Command,
    CommandResponse,
    CopyRelevantInfo,
    DownloadFiles,
    DownloadInvoicesFromListing,
    DownloadInvoicesFromPayments,
    ExtractAddressFromUnitSummary,
    FetchSummaryFromAddress,
    GetBuildingIdFromAddress,
    GetUnitSummaryUrlFromMeld,
    GetWorkOrderUrl,
    Harvester,
    ResolveRecordsPageUrl,
)
from tabharvest.downloads.batch import ProgressEvent
from tabharvest.utils.config import ensure_directories, get_settings
from tabharvest.utils.logging import configure_logging, get_logger


def initialize() -> None:
    """Initialize directories and logging."""
    ensure_directories()

    settings = get_settings()
    configure_logging(
        log_level=settings.general.log_level,
        json_format=True,
    )

    logger = get_logger(__name__)
    logger.info(
        "tabharvest initializing",
        version=settings.general.version,
        log_level=settings.general.log_level,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabharvest",
        description="tabharvest - hidden-tab data retrieval and invoice downloads",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    summary = sub.add_parser("summary", help="Build a unit summary")
    source = summary.add_mutually_exclusive_group(required=True)
    source.add_argument("--address", help="Look up the unit by street address")
    source.add_argument("--url", help="Work App unit detail page URL")
    source.add_argument("--page", help="Unit App unit summary, new meld or edit meld page URL")

    address = sub.add_parser("address", help="Read the unit address from a unit summary page")
    address.add_argument("url")

    unit_link = sub.add_parser("unit-link", help="Find the unit summary link on a meld summary page")
    unit_link.add_argument("url")

    building = sub.add_parser("building", help="Look up a building ID by address")
    building.add_argument("address")

    work_order = sub.add_parser("work-order", help="Find the Work App work order for an issue")
    work_order.add_argument("--address", required=True)
    work_order.add_argument("--issue-id", required=True)
    work_order.add_argument("--building-address")

    records_url = sub.add_parser(
        "records-url", help="Work App page for a unit summary or meld summary page"
    )
    records_url.add_argument("url")

    invoices = sub.add_parser("invoices", help="Download invoices from payment pages")
    invoice_source = invoices.add_mutually_exclusive_group(required=True)
    invoice_source.add_argument("--listing", help="Payments listing page URL")
    invoice_source.add_argument("--pages", nargs="+", help="Payment summary page URLs")

    download = sub.add_parser("download", help="Download files one after another")
    download.add_argument("urls", nargs="+")
    download.add_argument(
        "--filename",
        action="append",
        dest="filenames",
        help="Filename for the URL at the same position (repeatable)",
    )

    return parser


def build_command(args: argparse.Namespace) -> Command:
    """Translate parsed arguments into a command."""
    match args.command:
        case "summary":
            if args.address:
                return FetchSummaryFromAddress(address=args.address)
            if args.url:
                return BuildSummaryFromUrl(unit_detail_url=args.url)
            return CopyRelevantInfo(current_url=args.page)
        case "address":
            return ExtractAddressFromUnitSummary(unit_summary_url=args.url)
        case "unit-link":
            return GetUnitSummaryUrlFromMeld(meld_summary_url=args.url)
        case "building":
            return GetBuildingIdFromAddress(address=args.address)
        case "work-order":
            return GetWorkOrderUrl(
                address=args.address,
                issue_id=args.issue_id,
                building_address=args.building_address,
            )
        case "records-url":
            return ResolveRecordsPageUrl(current_url=args.url)
        case "invoices":
            if args.listing:
                return DownloadInvoicesFromListing(listing_url=args.listing)
            return DownloadInvoicesFromPayments(payment_summary_urls=tuple(args.pages))
        case "download":
            filenames = tuple(args.filenames) if args.filenames else None
            return DownloadFiles(urls=tuple(args.urls), filenames=filenames)
    raise ValueError(f"Unknown command: {args.command}")


def print_progress(event: ProgressEvent) -> None:
    print(f"[{event.current}/{event.total}] {event.detail}", file=sys.stderr)


async def run(command: Command) -> CommandResponse:
    """Connect to the browser, run one command, disconnect."""
    logger = get_logger(__name__)
    connection = BrowserConnection()
    harvester = Harvester(connection)
    harvester.add_progress_listener(print_progress)
    try:
        return await harvester.dispatch(command)
    finally:
        await harvester.close()
        await connection.close()
        logger.info("tabharvest shutdown complete")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    command = build_command(args)

    initialize()
    response = asyncio.run(run(command))

    print(json.dumps(response.to_dict(), ensure_ascii=False, indent=2))
    return 0 if response.success else 1


if __name__ == "__main__":
    sys.exit(main())
