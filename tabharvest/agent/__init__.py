"""
Page agents: query protocol, DOM handlers and the polling agent.
"""

from tabharvest.agent.page_agent import PageAgent, wait_for_render
from tabharvest.agent.queries import (
    AgentResponse,
    ExtractionQuery,
    ExtractionResult,
    ExtractionStatus,
    InvoiceDownloadQuery,
    MeldDetailsQuery,
    PaymentListingQuery,
    UnitAddressQuery,
    UnitSummaryLinkQuery,
)

__all__ = [
    "AgentResponse",
    "ExtractionQuery",
    "ExtractionResult",
    "ExtractionStatus",
    "InvoiceDownloadQuery",
    "MeldDetailsQuery",
    "PageAgent",
    "PaymentListingQuery",
    "UnitAddressQuery",
    "UnitSummaryLinkQuery",
    "wait_for_render",
]
