"""
Tests for the page agent: query handlers, render wait and ask-until-answered.

Test Perspectives Table:
| Case ID | Input / Precondition | Perspective | Expected Result | Notes |
|---------|---------------------|-------------|-----------------|-------|
| TC-N-01 | Link rendered on 3rd snapshot | Normal | SUCCESS | SPA render delay |
| TC-N-02 | Agent answers without the facts | Normal | NOT_FOUND with error | |
| TC-B-01 | Agent never answers | Boundary | TIMEOUT | Transport errors only |
| TC-A-01 | Tab closed by the user | Abnormal | TabClosed propagates | Not retried |
| TC-A-02 | ask_until_answered exhausted | Abnormal | AgentTimeout | |
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from playwright.async_api import Error as PlaywrightError

from tabharvest.agent.handlers import dispatch, get_handler
from tabharvest.agent.page_agent import PageAgent, wait_for_render
from tabharvest.agent.queries import (
    ExtractionQuery,
    ExtractionStatus,
    InvoiceDownloadQuery,
    MeldDetailsQuery,
    PaymentListingQuery,
    UnitAddressQuery,
    UnitSummaryLinkQuery,
)
from tabharvest.browser.tab_session import TabSession
from tabharvest.errors import AgentTimeout, ErrorCode, TabClosed
from tabharvest.extractor.labels import parse_html
from tabharvest.utils.polling import PollPolicy

UNIT_APP = "https://app.propertymeld.com"
ORG = "2611/m/2611"
PAYMENT_URL = f"{UNIT_APP}/{ORG}/melds/payments/10/summary/"
EMPTY = "<html><body><div id='root'></div></body></html>"


def _session(page, url: str = PAYMENT_URL) -> TabSession:
    page.url = url
    return TabSession(page, url)


class TestHandlers:
    def test_invoice_download(self, payment_summary_html: str) -> None:
        response = dispatch(InvoiceDownloadQuery(), parse_html(payment_summary_html), PAYMENT_URL)

        assert response.success
        assert response.fields == {
            "download_url": f"/{ORG}/invoices/55/download/",
            "meld_number": "123",
        }

    def test_invoice_download_missing(self) -> None:
        response = dispatch(InvoiceDownloadQuery(), parse_html(EMPTY), PAYMENT_URL)

        assert not response.success
        assert response.error == "Could not find invoice download link on this page"

    def test_unit_address(self) -> None:
        doc = parse_html(
            '<p data-testid="header-subtitle">100 Main St</p>'
            "<dl><dt>Address</dt><dd>100 Main St Unit 2 - Springfield</dd></dl>"
        )

        response = dispatch(UnitAddressQuery(), doc, UNIT_APP)

        assert response.fields == {
            "unit_address": "100 Main St Unit 2",
            "building_address": "100 Main St",
        }

    def test_unit_summary_link_relative(self) -> None:
        meld_url = f"{UNIT_APP}/{ORG}/meld/77/summary/"
        doc = parse_html(f'<a href="/{ORG}/properties/42/summary/">Unit</a>')

        response = dispatch(UnitSummaryLinkQuery(), doc, meld_url)

        assert response.fields == {"unit_summary_url": f"{UNIT_APP}/{ORG}/properties/42/summary/"}

    def test_meld_details_requires_issue_id(self) -> None:
        doc = parse_html(
            '<div data-testid="meld-details-unit-or-property-address">'
            '<div class="euiText eui-10x3kab-euiText-m">100 Main St</div>'
            '<div class="euiText eui-10x3kab-euiText-m">100 Main St Unit 2, Springfield</div>'
            "</div>"
        )

        response = dispatch(MeldDetailsQuery(), doc, UNIT_APP)

        assert response.error == "Could not extract Issue ID from meld summary page"

    def test_payment_listing_without_cards(self) -> None:
        response = dispatch(PaymentListingQuery(), parse_html(EMPTY), UNIT_APP)

        assert response.error == "No invoice cards found on this page"

    def test_payment_listing_cards_without_links(self) -> None:
        doc = parse_html('<div data-testid="meld-invoice-list-card-1">Pending</div>')

        response = dispatch(PaymentListingQuery(), doc, UNIT_APP)

        assert response.error == "Could not find any payment summary links"

    def test_unknown_query_type(self) -> None:
        @dataclass(frozen=True)
        class OwnerQuery(ExtractionQuery):
            kind = "owner"

        with pytest.raises(TypeError, match="OwnerQuery"):
            get_handler(OwnerQuery())


class TestWaitForRender:
    @pytest.mark.asyncio
    async def test_selector_appears(self, make_mock_page, fast_timings, payment_summary_html):
        page = make_mock_page([EMPTY, EMPTY, payment_summary_html])

        rendered = await wait_for_render(
            _session(page),
            InvoiceDownloadQuery.ready_selectors,
            policy=PollPolicy.render(timeout=1.0, interval=0.01),
        )

        assert rendered is True
        assert page.content.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_is_not_an_error(self, make_mock_page, fast_timings):
        """
        Given: A page that never renders any ready selector
        When: The render wait runs with a short budget
        Then: It returns False instead of raising
        """
        page = make_mock_page(EMPTY)

        assert await wait_for_render(_session(page), ("dt",)) is False
        assert page.content.await_count >= 2

    @pytest.mark.asyncio
    async def test_no_selectors(self, make_mock_page):
        page = make_mock_page(EMPTY)

        assert await wait_for_render(_session(page), ()) is True
        page.content.assert_not_awaited()


class TestPageAgent:
    # =========================================================================
    # TC-N-01: SPA renders the link late
    # =========================================================================
    @pytest.mark.asyncio
    async def test_extract_success_after_render(
        self, make_mock_page, fast_timings, payment_summary_html
    ) -> None:
        """
        Given: A payment page whose link renders on the third snapshot
        When: The invoice query is extracted
        Then: SUCCESS with the link and meld number
        """
        page = make_mock_page([EMPTY, EMPTY, payment_summary_html])
        agent = PageAgent(_session(page))

        result = await agent.extract(InvoiceDownloadQuery(timeout=0.5, max_attempts=5))

        assert result.ok
        assert result.status == ExtractionStatus.SUCCESS
        assert result.get("meld_number") == "123"
        assert result.get("download_url") == f"/{ORG}/invoices/55/download/"
        assert result.get("missing", "default") == "default"

    # =========================================================================
    # TC-N-02: The facts are not on the page
    # =========================================================================
    @pytest.mark.asyncio
    async def test_extract_not_found(self, make_mock_page, fast_timings) -> None:
        page = make_mock_page(EMPTY)
        agent = PageAgent(_session(page))

        result = await agent.extract(InvoiceDownloadQuery(timeout=2.0, max_attempts=3))

        assert result.status == ExtractionStatus.NOT_FOUND
        assert not result.ok
        assert result.error == "Could not find invoice download link on this page"
        assert result.attempts == 3

    # =========================================================================
    # TC-B-01: No answer at all
    # =========================================================================
    @pytest.mark.asyncio
    async def test_extract_timeout(self, make_mock_page, fast_timings) -> None:
        page = make_mock_page(EMPTY)
        page.content.side_effect = PlaywrightError("Execution context was destroyed")
        agent = PageAgent(_session(page))

        result = await agent.extract(InvoiceDownloadQuery(timeout=0.2, max_attempts=3))

        assert result.status == ExtractionStatus.TIMEOUT
        assert "Execution context was destroyed" in result.error
        assert result.fields == {}

    # =========================================================================
    # TC-A-01: Tab closed mid-poll
    # =========================================================================
    @pytest.mark.asyncio
    async def test_tab_closed_is_fatal(self, make_mock_page, fast_timings) -> None:
        page = make_mock_page(EMPTY)
        page.content.side_effect = PlaywrightError("Target closed")
        page.is_closed.return_value = True
        agent = PageAgent(_session(page))

        with pytest.raises(TabClosed):
            await agent.extract(InvoiceDownloadQuery(timeout=1.0))
        assert page.content.await_count == 1

    # =========================================================================
    # TC-A-02: ask_until_answered gives up
    # =========================================================================
    @pytest.mark.asyncio
    async def test_ask_until_answered_timeout(self, make_mock_page, fast_timings) -> None:
        page = make_mock_page(EMPTY)
        agent = PageAgent(_session(page, f"{UNIT_APP}/{ORG}/properties/42/summary/"))

        with pytest.raises(AgentTimeout) as exc_info:
            await agent.ask_until_answered(UnitAddressQuery(timeout=2.0, max_attempts=2))

        assert exc_info.value.code == ErrorCode.AGENT_TIMEOUT
        assert exc_info.value.details["query"] == "unit_address"
        assert exc_info.value.details["attempts"] == 2

    @pytest.mark.asyncio
    async def test_ask_until_answered_success(self, make_mock_page, fast_timings) -> None:
        page = make_mock_page("<dl><dt>Address</dt><dd>7 Elm St - 3B</dd></dl>")
        agent = PageAgent(_session(page, f"{UNIT_APP}/{ORG}/properties/42/summary/"))

        response = await agent.ask_until_answered(UnitAddressQuery(timeout=0.5))

        assert response.fields["unit_address"] == "7 Elm St"
        assert response.fields["building_address"] is None

    def test_policy_for_query(self, make_mock_page, fast_timings) -> None:
        agent = PageAgent(_session(make_mock_page()))

        policy = agent.policy_for(InvoiceDownloadQuery(timeout=5.0, max_attempts=5))

        assert policy.max_wait == 5.0
        assert policy.max_attempts == 5
        assert policy.backoff.base_delay == 0.01
        assert TabClosed in policy.fatal_exceptions
