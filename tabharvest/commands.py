"""
Command dispatch.

Every inbound request is one of a closed set of frozen command dataclasses.
Harvester.dispatch() routes each to exactly one handler and converts every
outcome, including unexpected exceptions, into a CommandResponse.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any, TypeVar
from urllib.parse import urlencode, urlparse
from uuid import uuid4

from tabharvest.agent.page_agent import PageAgent
from tabharvest.agent.queries import (
    AgentResponse,
    ExtractionQuery,
    MeldDetailsQuery,
    UnitAddressQuery,
    UnitSummaryLinkQuery,
)
from tabharvest.browser.connection import BrowserConnection
from tabharvest.browser.tab_session import open_tab
from tabharvest.downloads.batch import ProgressEvent, ProgressListener, emit_progress
from tabharvest.downloads.correlator import FilenameCorrelator
from tabharvest.downloads.invoices import InvoiceDownloader, download_files
from tabharvest.downloads.manager import DownloadManager
from tabharvest.errors import ErrorCode, HarvestError, InvalidInput, RecordsApiError
from tabharvest.records.client import RecordsClient
from tabharvest.report.summary import build_unit_summary
from tabharvest.urls import (
    PageType,
    build_meld_summary_url_from_edit_meld,
    build_unit_summary_url_from_new_meld,
    classify_page,
)
from tabharvest.utils.config import Settings, get_settings
from tabharvest.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

Q = TypeVar("Q", bound=ExtractionQuery)


# =============================================================================
# Commands
# =============================================================================


@dataclass(frozen=True)
class FetchSummaryFromAddress:
    address: str


@dataclass(frozen=True)
class BuildSummaryFromUrl:
    unit_detail_url: str


@dataclass(frozen=True)
class GetBuildingIdFromAddress:
    address: str


@dataclass(frozen=True)
class GetWorkOrderUrl:
    address: str
    issue_id: str
    building_address: str | None = None


@dataclass(frozen=True)
class ExtractAddressFromUnitSummary:
    unit_summary_url: str


@dataclass(frozen=True)
class GetUnitSummaryUrlFromMeld:
    meld_summary_url: str


@dataclass(frozen=True)
class CopyRelevantInfo:
    current_url: str


@dataclass(frozen=True)
class ResolveRecordsPageUrl:
    current_url: str


@dataclass(frozen=True)
class DownloadFiles:
    urls: tuple[str, ...]
    filenames: tuple[str | None, ...] | None = None


@dataclass(frozen=True)
class DownloadInvoicesFromPayments:
    payment_summary_urls: tuple[str, ...]


@dataclass(frozen=True)
class DownloadInvoicesFromListing:
    listing_url: str


Command = (
    FetchSummaryFromAddress
    | BuildSummaryFromUrl
    | GetBuildingIdFromAddress
    | GetWorkOrderUrl
    | ExtractAddressFromUnitSummary
    | GetUnitSummaryUrlFromMeld
    | CopyRelevantInfo
    | ResolveRecordsPageUrl
    | DownloadFiles
    | DownloadInvoicesFromPayments
    | DownloadInvoicesFromListing
)


@dataclass
class CommandResponse:
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] | None = None

    @classmethod
    def ok(cls, **data: Any) -> CommandResponse:
        return cls(success=True, data=data)

    @classmethod
    def from_error(cls, error: HarvestError) -> CommandResponse:
        return cls(
            success=False,
            error=error.message,
            error_code=error.code.value,
            details=error.details or None,
        )

    def to_dict(self) -> dict[str, Any]:
        result = {k: v for k, v in asdict(self).items() if v is not None}
        if not self.data:
            result.pop("data", None)
        return result


def _require(value: str | None, name: str) -> str:
    if not value or not value.strip():
        raise InvalidInput(f"{name} is required", param_name=name)
    return value.strip()


def _cache_busted(url: str) -> str:
    separator = "&" if urlparse(url).query else "?"
    return f"{url}{separator}{urlencode({'_nocache': uuid4().hex[:12]})}"


# =============================================================================
# Dispatcher
# =============================================================================


class Harvester:
    """Runs commands against a browser connection and the records API."""

    def __init__(
        self,
        connection: BrowserConnection,
        *,
        records: RecordsClient | None = None,
        correlator: FilenameCorrelator | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._connection = connection
        self._records = records or RecordsClient(
            self._settings.records_api, self._settings.work_app
        )
        self._correlator = correlator or FilenameCorrelator(
            self._settings.downloads.correlator_max_entries
        )
        self._manager: DownloadManager | None = None
        self._progress_listeners: list[ProgressListener] = []

        self._handlers: dict[type, Callable[[Any], Awaitable[dict[str, Any]]]] = {
            FetchSummaryFromAddress: self._fetch_summary_from_address,
            BuildSummaryFromUrl: self._build_summary_from_url,
            GetBuildingIdFromAddress: self._get_building_id_from_address,
            GetWorkOrderUrl: self._get_work_order_url,
            ExtractAddressFromUnitSummary: self._extract_address_from_unit_summary,
            GetUnitSummaryUrlFromMeld: self._get_unit_summary_url_from_meld,
            CopyRelevantInfo: self._copy_relevant_info,
            ResolveRecordsPageUrl: self._resolve_records_page_url,
            DownloadFiles: self._download_files,
            DownloadInvoicesFromPayments: self._download_invoices_from_payments,
            DownloadInvoicesFromListing: self._download_invoices_from_listing,
        }

    @property
    def correlator(self) -> FilenameCorrelator:
        return self._correlator

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._progress_listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        self._progress_listeners.remove(listener)

    def _emit_progress(self, event: ProgressEvent) -> None:
        for listener in list(self._progress_listeners):
            emit_progress(listener, event)

    async def dispatch(self, command: Command) -> CommandResponse:
        """Run one command; never raises."""
        handler = self._handlers.get(type(command))
        if handler is None:
            return CommandResponse(
                success=False,
                error=f"Unknown command: {type(command).__name__}",
                error_code=ErrorCode.INVALID_INPUT.value,
            )

        command_name = type(command).__name__
        with LogContext(command=command_name):
            logger.info("Command started")
            try:
                data = await handler(command)
            except HarvestError as e:
                logger.warning("Command failed", error_code=e.code.value, error=e.message)
                return CommandResponse.from_error(e)
            except Exception as e:
                logger.exception("Command crashed", error=str(e))
                return CommandResponse(
                    success=False,
                    error=str(e) or type(e).__name__,
                    error_code=ErrorCode.INTERNAL_ERROR.value,
                )
            logger.info("Command finished")
            return CommandResponse.ok(**data)

    async def close(self) -> None:
        await self._records.close()

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    async def _manager_for_context(self) -> DownloadManager:
        """Download manager bound to the live browser context.

        Rebuilt when the connection hands out a new context after a reconnect.
        """
        context = await self._connection.get_context()
        if self._manager is None or self._manager.context is not context:
            if self._manager is not None:
                logger.info("Browser context changed, rebuilding download manager")
            self._manager = DownloadManager(context)
            self._manager.add_filename_listener(self._correlator.apply)
        return self._manager

    async def _invoice_downloader(self) -> InvoiceDownloader:
        manager = await self._manager_for_context()
        return InvoiceDownloader(
            manager.context, manager, self._correlator, settings=self._settings
        )

    def _agent_query(self, query_type: type[Q], **kwargs: Any) -> Q:
        config = self._settings.polling.agent
        return query_type(timeout=config.max_wait, max_attempts=config.max_attempts, **kwargs)

    async def _ask_hidden_tab(self, url: str, query: ExtractionQuery) -> AgentResponse:
        """Open url in a hidden tab, let the SPA settle, ask its agent."""
        context = await self._connection.get_context()
        async with open_tab(context, url) as session:
            await asyncio.sleep(self._settings.tabs.spa_settle_delay)
            return await PageAgent(session).ask_until_answered(query)

    async def _load_page_html(self, url: str) -> str:
        context = await self._connection.get_context()
        async with open_tab(context, _cache_busted(url)) as session:
            return await session.content()

    async def _summary_for_unit_detail(self, unit_detail_url: str) -> str:
        html = await self._load_page_html(unit_detail_url)
        return build_unit_summary(html)

    async def _unit_summary_addresses(self, unit_summary_url: str) -> tuple[str, str | None]:
        response = await self._ask_hidden_tab(
            unit_summary_url, self._agent_query(UnitAddressQuery)
        )
        return response.fields["unit_address"], response.fields.get("building_address")

    async def _unit_summary_url_from_meld(self, meld_summary_url: str) -> str:
        response = await self._ask_hidden_tab(
            meld_summary_url, self._agent_query(UnitSummaryLinkQuery)
        )
        return response.fields["unit_summary_url"]

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _fetch_summary_from_address(self, command: FetchSummaryFromAddress) -> dict[str, Any]:
        address = _require(command.address, "address")
        building_id = await self._records.resolve_building_id(address)
        unit_detail_url = self._records.unit_detail_url(building_id)
        summary = await self._summary_for_unit_detail(unit_detail_url)
        return {"summary": summary, "building_id": building_id, "unit_detail_url": unit_detail_url}

    async def _build_summary_from_url(self, command: BuildSummaryFromUrl) -> dict[str, Any]:
        url = _require(command.unit_detail_url, "unit_detail_url")
        return {"summary": await self._summary_for_unit_detail(url)}

    async def _get_building_id_from_address(
        self, command: GetBuildingIdFromAddress
    ) -> dict[str, Any]:
        address = _require(command.address, "address")
        return {"building_id": await self._records.resolve_building_id(address)}

    async def _get_work_order_url(self, command: GetWorkOrderUrl) -> dict[str, Any]:
        address = _require(command.address, "address")
        issue_id = _require(command.issue_id, "issue_id")
        url = await self._records.find_work_order_url(
            address, issue_id, fallback_address=command.building_address
        )
        if url is None:
            raise RecordsApiError(f"No work order found with Issue ID {issue_id}")
        return {"url": url}

    async def _extract_address_from_unit_summary(
        self, command: ExtractAddressFromUnitSummary
    ) -> dict[str, Any]:
        url = _require(command.unit_summary_url, "unit_summary_url")
        unit_address, building_address = await self._unit_summary_addresses(url)
        return {"unit_address": unit_address, "building_address": building_address}

    async def _get_unit_summary_url_from_meld(
        self, command: GetUnitSummaryUrlFromMeld
    ) -> dict[str, Any]:
        url = _require(command.meld_summary_url, "meld_summary_url")
        return {"unit_summary_url": await self._unit_summary_url_from_meld(url)}

    async def _copy_relevant_info(self, command: CopyRelevantInfo) -> dict[str, Any]:
        current_url = _require(command.current_url, "current_url")
        page_type = classify_page(current_url)
        logger.debug("Page classified", page_type=page_type.value)

        if page_type == PageType.UNIT_SUMMARY:
            unit_summary_url = current_url
        elif page_type == PageType.NEW_MELD:
            unit_summary_url = build_unit_summary_url_from_new_meld(current_url)
        elif page_type == PageType.EDIT_MELD:
            meld_summary_url = build_meld_summary_url_from_edit_meld(current_url)
            unit_summary_url = await self._unit_summary_url_from_meld(meld_summary_url)
        else:
            raise InvalidInput(
                "This tool only works on Meld Unit Summary, Meld Creation, or Meld Edit pages.",
                param_name="current_url",
            )

        address, _ = await self._unit_summary_addresses(unit_summary_url)
        building_id = await self._records.resolve_building_id(address)
        summary = await self._summary_for_unit_detail(self._records.unit_detail_url(building_id))
        return {"summary": summary, "address": address, "unit_summary_url": unit_summary_url}

    async def _resolve_records_page_url(self, command: ResolveRecordsPageUrl) -> dict[str, Any]:
        current_url = _require(command.current_url, "current_url")
        page_type = classify_page(current_url)

        if page_type == PageType.UNIT_SUMMARY:
            unit_address, building_address = await self._unit_summary_addresses(current_url)
            building_id = await self._records.resolve_building_id(
                unit_address, fallback_address=building_address
            )
            return {"url": self._records.unit_detail_url(building_id)}

        if page_type == PageType.MELD_SUMMARY:
            response = await self._ask_hidden_tab(current_url, self._agent_query(MeldDetailsQuery))
            url = await self._records.find_work_order_url(
                response.fields["unit_address"],
                response.fields["issue_id"],
                fallback_address=response.fields.get("building_address"),
            )
            if url is None:
                raise RecordsApiError(
                    f"No work order found with Issue ID {response.fields['issue_id']}"
                )
            return {"url": url}

        raise InvalidInput(
            "This tool only works on Meld unit summary or meld summary pages.",
            param_name="current_url",
        )

    async def _download_files(self, command: DownloadFiles) -> dict[str, Any]:
        if not command.urls:
            raise InvalidInput("urls must not be empty", param_name="urls")
        manager = await self._manager_for_context()
        paths = await download_files(
            manager,
            command.urls,
            command.filenames,
            delay=self._settings.downloads.sequential_delay,
        )
        return {"count": len(paths), "paths": [str(p) for p in paths]}

    async def _download_invoices_from_payments(
        self, command: DownloadInvoicesFromPayments
    ) -> dict[str, Any]:
        if not command.payment_summary_urls:
            raise InvalidInput(
                "payment_summary_urls must not be empty", param_name="payment_summary_urls"
            )
        downloader = await self._invoice_downloader()
        result = await downloader.download_from_payment_pages(
            command.payment_summary_urls, on_progress=self._emit_progress
        )
        return result.to_dict()

    async def _download_invoices_from_listing(
        self, command: DownloadInvoicesFromListing
    ) -> dict[str, Any]:
        listing_url = _require(command.listing_url, "listing_url")
        if classify_page(listing_url) != PageType.PAYMENTS_LISTING:
            raise InvalidInput(
                "This tool only works on the Meld Payments page (URL pattern: .../melds/payments/...)",
                param_name="listing_url",
            )
        downloader = await self._invoice_downloader()
        result = await downloader.download_from_listing(
            listing_url, on_progress=self._emit_progress
        )
        return result.to_dict()
