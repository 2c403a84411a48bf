"""
Page agent protocol.

A query is a frozen request dispatched to the agent of one tab; the agent
answers with an AgentResponse. The set of query kinds is closed: every
subclass below has exactly one handler in tabharvest.agent.handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from tabharvest.extractor.app_pages import UNIT_SUMMARY_URL_RE


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"  # The agent answered but the facts are not on the page
    TIMEOUT = "timeout"  # The agent never answered


@dataclass(frozen=True)
class ExtractionQuery:
    """Base query.

    Attributes:
        timeout: Wall-clock budget for getting a successful answer (seconds).
        max_attempts: Secondary bound on the number of asks.
    """

    kind: ClassVar[str] = "query"
    # Any of these present in the DOM means the page has rendered enough to ask
    ready_selectors: ClassVar[tuple[str, ...]] = ()

    timeout: float = 8.0
    max_attempts: int = 10


@dataclass(frozen=True)
class InvoiceDownloadQuery(ExtractionQuery):
    """Invoice download link and meld number on a payment summary page."""

    kind: ClassVar[str] = "invoice_download"
    ready_selectors: ClassVar[tuple[str, ...]] = (
        'a[href*="/invoices/"][href*="/download/"]',
        '.euiLink[href*="download"]',
        'a[href*="download"]',
    )

    timeout: float = 5.0
    max_attempts: int = 5


@dataclass(frozen=True)
class UnitAddressQuery(ExtractionQuery):
    """Unit street address (and building address) on a unit summary page."""

    kind: ClassVar[str] = "unit_address"
    ready_selectors: ClassVar[tuple[str, ...]] = (
        "dt",
        '[data-testid*="address"]',
        '[data-testid="header-subtitle"]',
        ".euiFlexGroup",
    )


@dataclass(frozen=True)
class UnitSummaryLinkQuery(ExtractionQuery):
    """Link to the unit summary page from a meld summary page."""

    kind: ClassVar[str] = "unit_summary_link"
    ready_selectors: ClassVar[tuple[str, ...]] = (
        'a[href*="/properties/"]',
        'a[href*="summary"]',
    )

    path_pattern: str = UNIT_SUMMARY_URL_RE.pattern


@dataclass(frozen=True)
class MeldDetailsQuery(ExtractionQuery):
    """Unit address, building address and issue ID on a meld summary page."""

    kind: ClassVar[str] = "meld_details"
    ready_selectors: ClassVar[tuple[str, ...]] = (
        '[data-testid="meld-details-unit-or-property-address"]',
        ".euiFlexGroup",
    )


@dataclass(frozen=True)
class PaymentListingQuery(ExtractionQuery):
    """Payment summary links on the payments listing page."""

    kind: ClassVar[str] = "payment_listing"
    ready_selectors: ClassVar[tuple[str, ...]] = (
        '[data-testid^="meld-invoice-list-card"]',
        ".invoice-card",
        'a[href*="/melds/payments/"]',
    )

    timeout: float = 5.0


@dataclass
class AgentResponse:
    """One answer from a page agent."""

    success: bool
    fields: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, **fields: Any) -> AgentResponse:
        return cls(success=True, fields=fields)

    @classmethod
    def failure(cls, error: str, **fields: Any) -> AgentResponse:
        return cls(success=False, fields=fields, error=error)


@dataclass
class ExtractionResult:
    """Outcome of asking an agent until it answers or the budget runs out."""

    status: ExtractionStatus
    fields: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status == ExtractionStatus.SUCCESS

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)
