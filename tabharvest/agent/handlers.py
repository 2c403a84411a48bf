"""
Page agent handlers.

Each handler answers one query kind from a parsed DOM snapshot and the URL
the snapshot was taken at. Handlers are pure: no browser access, no waiting.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

from bs4 import BeautifulSoup

from tabharvest.agent.queries import (
    AgentResponse,
    ExtractionQuery,
    InvoiceDownloadQuery,
    MeldDetailsQuery,
    PaymentListingQuery,
    UnitAddressQuery,
    UnitSummaryLinkQuery,
)
from tabharvest.extractor import app_pages

Handler = Callable[[Any, BeautifulSoup, str], AgentResponse]

_HANDLERS: dict[type[ExtractionQuery], Handler] = {}


def handles(query_type: type[ExtractionQuery]) -> Callable[[Handler], Handler]:
    """Register a handler for a query type."""

    def decorator(func: Handler) -> Handler:
        if query_type in _HANDLERS:
            raise ValueError(f"Duplicate handler for {query_type.__name__}")
        _HANDLERS[query_type] = func
        return func

    return decorator


def get_handler(query: ExtractionQuery) -> Handler:
    try:
        return _HANDLERS[type(query)]
    except KeyError:
        raise TypeError(f"No page agent handler for {type(query).__name__}") from None


def dispatch(query: ExtractionQuery, doc: BeautifulSoup, page_url: str) -> AgentResponse:
    """Answer a query from a DOM snapshot."""
    return get_handler(query)(query, doc, page_url)


@handles(InvoiceDownloadQuery)
def answer_invoice_download(
    query: InvoiceDownloadQuery, doc: BeautifulSoup, page_url: str
) -> AgentResponse:
    href = app_pages.extract_invoice_download_href(doc)
    if not href:
        return AgentResponse.failure("Could not find invoice download link on this page")
    return AgentResponse.ok(
        download_url=href,
        meld_number=app_pages.extract_meld_number(doc),
    )


@handles(UnitAddressQuery)
def answer_unit_address(
    query: UnitAddressQuery, doc: BeautifulSoup, page_url: str
) -> AgentResponse:
    unit_address = app_pages.extract_unit_address(doc)
    if not unit_address:
        return AgentResponse.failure("Could not find unit address on unit summary page")
    return AgentResponse.ok(
        unit_address=unit_address,
        building_address=app_pages.extract_building_address(doc),
    )


@handles(UnitSummaryLinkQuery)
def answer_unit_summary_link(
    query: UnitSummaryLinkQuery, doc: BeautifulSoup, page_url: str
) -> AgentResponse:
    pattern = re.compile(query.path_pattern, re.IGNORECASE)
    url = app_pages.extract_unit_summary_url(doc, page_url, pattern)
    if not url:
        return AgentResponse.failure("Could not find unit summary URL on meld summary page")
    return AgentResponse.ok(unit_summary_url=url)


@handles(MeldDetailsQuery)
def answer_meld_details(
    query: MeldDetailsQuery, doc: BeautifulSoup, page_url: str
) -> AgentResponse:
    building_address, unit_address = app_pages.extract_meld_addresses(doc)
    issue_id = app_pages.extract_issue_id(doc)
    if not unit_address:
        return AgentResponse.failure("Could not extract unit address from meld summary page")
    if not issue_id:
        return AgentResponse.failure("Could not extract Issue ID from meld summary page")
    return AgentResponse.ok(
        unit_address=unit_address,
        building_address=building_address,
        issue_id=issue_id,
    )


@handles(PaymentListingQuery)
def answer_payment_listing(
    query: PaymentListingQuery, doc: BeautifulSoup, page_url: str
) -> AgentResponse:
    if not doc.select_one(app_pages.INVOICE_CARD_SELECTOR):
        return AgentResponse.failure("No invoice cards found on this page")
    urls = app_pages.extract_payment_summary_urls(doc, page_url)
    if not urls:
        return AgentResponse.failure("Could not find any payment summary links")
    return AgentResponse.ok(payment_summary_urls=urls)
