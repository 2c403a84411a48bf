"""
Unit App page classification and URL builders.

Unit App paths carry an organization prefix ("2611/m/2611") that every
derived URL must preserve.
"""

from __future__ import annotations

import re
from enum import Enum
from urllib.parse import ParseResult, parse_qs, urlparse

from tabharvest.errors import InvalidInput
from tabharvest.utils.config import get_settings


class PageType(str, Enum):
    UNIT_SUMMARY = "unit_summary"
    NEW_MELD = "new_meld"
    EDIT_MELD = "edit_meld"
    MELD_SUMMARY = "meld_summary"
    PAYMENTS_LISTING = "payments_listing"
    OTHER = "other"


_PAGE_PATTERNS: tuple[tuple[PageType, re.Pattern[str]], ...] = (
    (PageType.UNIT_SUMMARY, re.compile(r"/properties/\d+/summary/?$")),
    (PageType.NEW_MELD, re.compile(r"/melds/new-meld/?$")),
    (PageType.EDIT_MELD, re.compile(r"/meld/\d+/edit/?$")),
    (PageType.MELD_SUMMARY, re.compile(r"/meld/\d+/summary/?$")),
    (PageType.PAYMENTS_LISTING, re.compile(r"/melds/payments/?$")),
)

_ORG_PREFIX_RE = re.compile(r"^/([^/]+/m/[^/]+)/")
_EDIT_MELD_RE = re.compile(r"^/([^/]+/m/[^/]+)/meld/(\d+)/edit/?$")


def _parse(url: str) -> ParseResult:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise InvalidInput(f"Not an absolute URL: {url}", param_name="url")
    return parsed


def classify_page(url: str) -> PageType:
    """Page type of a Unit App URL; OTHER for anything else.

    Raises:
        InvalidInput: url is not absolute.
    """
    parsed = _parse(url)
    if get_settings().unit_app.host_marker not in parsed.hostname:
        return PageType.OTHER
    for page_type, pattern in _PAGE_PATTERNS:
        if pattern.search(parsed.path):
            return page_type
    return PageType.OTHER


def build_unit_summary_url_from_new_meld(url: str) -> str:
    """Unit summary URL for the unit a new meld is being created for.

    Raises:
        InvalidInput: No for_unit parameter or no organization prefix.
    """
    parsed = _parse(url)
    unit_ids = parse_qs(parsed.query).get("for_unit")
    if not unit_ids or not unit_ids[0]:
        raise InvalidInput("No for_unit param found in Meld creation URL.", param_name="url")

    match = _ORG_PREFIX_RE.match(parsed.path)
    if not match:
        raise InvalidInput("Could not determine organization prefix from URL.", param_name="url")

    base_url = get_settings().unit_app.base_url.rstrip("/")
    return f"{base_url}/{match.group(1)}/properties/{unit_ids[0]}/summary/"


def build_meld_summary_url_from_edit_meld(url: str) -> str:
    """Meld summary URL for a meld edit page.

    Raises:
        InvalidInput: The path is not an edit-meld path.
    """
    parsed = _parse(url)
    match = _EDIT_MELD_RE.match(parsed.path)
    if not match:
        raise InvalidInput("Could not extract meld ID from edit meld URL.", param_name="url")

    prefix, meld_id = match.groups()
    base_url = get_settings().unit_app.base_url.rstrip("/")
    return f"{base_url}/{prefix}/meld/{meld_id}/summary/"
