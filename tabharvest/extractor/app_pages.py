"""
DOM extractors for Unit App pages.

The Unit App is a client-rendered SPA built on a component library whose
class names and data-testid attributes are the only stable anchors. These
functions run against a snapshot of the rendered DOM and return None (or an
empty list) when the element has not rendered or does not exist.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from tabharvest.extractor.labels import normalize_text

UNIT_SUMMARY_URL_RE = re.compile(r"/properties/\d+/summary/?(?:$|[?#])", re.IGNORECASE)

INVOICE_LINK_SELECTOR = 'a[href*="/invoices/"][href*="/download/"]'
MELD_NUMBER_SELECTOR = '[data-testid="invoice-detail-meld-number"]'
BUILDING_ADDRESS_SELECTOR = '[data-testid="header-subtitle"]'
MELD_ADDRESS_CONTAINER_SELECTOR = '[data-testid="meld-details-unit-or-property-address"]'
MELD_ADDRESS_LINE_SELECTOR = ".euiText.eui-10x3kab-euiText-m"
INVOICE_CARD_SELECTOR = '[data-testid^="meld-invoice-list-card"]'
PAYMENT_SUMMARY_LINK_SELECTOR = 'a[href*="/melds/payments/"][href*="/summary/"]'

_ADDRESS_TERM_RE = re.compile(r"^Address$", re.IGNORECASE)
_ISSUE_ID_TERM_RE = re.compile(r"^Issue ID$", re.IGNORECASE)


def _closest_flex_group(element: Tag) -> Tag | None:
    for parent in element.parents:
        if "euiFlexGroup" in (parent.get("class") or []):
            return parent
    return None


def _definition_containers(term: Tag) -> Iterator[Tag]:
    """Containers that may hold the <dd> paired with a label element.

    The enclosing flex group first, then every ancestor outward.
    """
    flex_group = _closest_flex_group(term)
    if flex_group is not None:
        yield flex_group
    for parent in term.parents:
        if isinstance(parent, Tag) and parent is not flex_group:
            yield parent


def _definition_for(term: Tag) -> str | None:
    for container in _definition_containers(term):
        definition = container.find("dd")
        if definition is None:
            continue
        value = normalize_text(definition.get_text())
        if value:
            return value
    return None


def extract_unit_address(doc: BeautifulSoup) -> str | None:
    """Street part of the unit address on a unit summary page.

    The rendered value is "street - unit"; only the street is kept.
    """
    for term in doc.find_all("dt"):
        if not _ADDRESS_TERM_RE.search(normalize_text(term.get_text())):
            continue
        value = _definition_for(term)
        if value:
            return value.split("-", 1)[0].strip() or value
    return None


def extract_building_address(doc: BeautifulSoup) -> str | None:
    subtitle = doc.select_one(BUILDING_ADDRESS_SELECTOR)
    if subtitle is None:
        return None
    return normalize_text(subtitle.get_text()) or None


def extract_meld_addresses(doc: BeautifulSoup) -> tuple[str | None, str | None]:
    """Return (building_address, unit_address) from a meld summary page.

    The meld details panel renders the building line first and, for unit
    melds, the unit line second as "street, city...".
    """
    container = doc.select_one(MELD_ADDRESS_CONTAINER_SELECTOR)
    if container is None:
        return None, None

    lines = container.select(MELD_ADDRESS_LINE_SELECTOR)
    building = normalize_text(lines[0].get_text()) if lines else ""
    unit = ""
    if len(lines) > 1:
        unit = normalize_text(lines[1].get_text()).split(",", 1)[0].strip()
    return building or None, unit or None


def extract_issue_id(doc: BeautifulSoup) -> str | None:
    for element in doc.find_all(True):
        if not _ISSUE_ID_TERM_RE.search(normalize_text(element.get_text())):
            continue
        value = _definition_for(element)
        if value:
            return value
    return None


def extract_unit_summary_url(
    doc: BeautifulSoup,
    base_url: str,
    pattern: re.Pattern[str] | None = None,
) -> str | None:
    """Absolute URL of the first link pointing at a unit summary page."""
    pattern = pattern or UNIT_SUMMARY_URL_RE
    for link in doc.find_all("a", href=True):
        url = urljoin(base_url, link["href"])
        if pattern.search(url):
            return url
    return None


def extract_invoice_download_href(doc: BeautifulSoup) -> str | None:
    """Relative href of the invoice download link on a payment summary page."""
    link = doc.select_one(INVOICE_LINK_SELECTOR)
    if link is None:
        return None
    return link.get("href") or None


def extract_meld_number(doc: BeautifulSoup) -> str | None:
    container = doc.select_one(MELD_NUMBER_SELECTOR)
    if container is None:
        return None
    control = container.find(["button", "a"]) or container
    return normalize_text(control.get_text()) or None


def normalize_listing_url(url: str) -> str:
    """Drop the fragment and any trailing slash."""
    return url.split("#", 1)[0].rstrip("/")


def extract_payment_summary_urls(doc: BeautifulSoup, base_url: str) -> list[str]:
    """Absolute, de-duplicated payment summary URLs from a payments listing.

    Links that differ only by fragment or trailing slash are duplicates; the
    first occurrence wins and order follows the listing.
    """
    seen: set[str] = set()
    urls: list[str] = []
    for card in doc.select(INVOICE_CARD_SELECTOR):
        link = card.select_one(PAYMENT_SUMMARY_LINK_SELECTOR)
        if link is None or not link.get("href"):
            continue
        url = urljoin(base_url, link["href"])
        key = normalize_listing_url(url)
        if key in seen:
            continue
        seen.add(key)
        urls.append(url)
    return urls


def any_selector_present(doc: BeautifulSoup, selectors: tuple[str, ...]) -> bool:
    return any(doc.select_one(selector) is not None for selector in selectors)
