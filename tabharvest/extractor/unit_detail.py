"""
Field extractors for the Work App unit detail page.

Every value comes from label/value lookups (tabharvest.extractor.labels) or,
for the tenant roster, from a header-mapped table. Each function returns
None / [] when its fields are absent so the summary can omit the block.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag

from tabharvest.extractor.labels import (
    find_rich_value_by_label,
    find_value_by_label,
    normalize_text,
)

TENANT_TABLE_MARKER = re.compile(r"Tenant Information", re.IGNORECASE)

# Column name -> header pattern, in output order
TENANT_COLUMNS: dict[str, re.Pattern[str]] = {
    "name": re.compile(r"Primary Contact|Name", re.IGNORECASE),
    "home": re.compile(r"Home Phone", re.IGNORECASE),
    "work": re.compile(r"Work Phone", re.IGNORECASE),
    "mobile": re.compile(r"Mobile Phone", re.IGNORECASE),
    "email": re.compile(r"Email", re.IGNORECASE),
}

TENANT_HEADER_LINE = "Name Home Phone Work Phone Mobile Email"


def extract_address(doc: BeautifulSoup) -> str | None:
    """Page heading, else the Location field, else the marketing address."""
    header = doc.select_one("h1, h2, .pageTitle, .headerTitle") or doc.select_one(
        '[id*="address"], [class*="address"]'
    )
    if header is not None:
        text = normalize_text(header.get_text())
        if text:
            return text

    location = find_value_by_label(doc, re.compile(r"^Location\b", re.IGNORECASE))
    if location:
        return location

    marketing = find_value_by_label(
        doc, re.compile(r"^For Lease - Address Other Description", re.IGNORECASE)
    )
    return marketing or None


def find_marker_table(doc: BeautifulSoup, marker: re.Pattern[str]) -> Tag | None:
    """First table whose full text contains the marker."""
    for table in doc.find_all("table"):
        if marker.search(table.get_text()):
            return table
    return None


def map_header_columns(
    header_cells: list[str],
    columns: dict[str, re.Pattern[str]],
) -> dict[str, int]:
    """Map column keys to the index of the first header matching each pattern.

    Keys whose pattern matches no header map to -1.
    """
    positions: dict[str, int] = {}
    for key, pattern in columns.items():
        positions[key] = next(
            (i for i, header in enumerate(header_cells) if pattern.search(header)),
            -1,
        )
    return positions


def extract_tenant_lines(doc: BeautifulSoup) -> list[str]:
    """One line per tenant: name then any non-empty phone/email columns."""
    table = find_marker_table(doc, TENANT_TABLE_MARKER)
    if table is None:
        return []

    rows = table.find_all("tr")
    if len(rows) < 2:
        return []

    header_cells = [c.get_text().strip() for c in rows[0].find_all(["th", "td"])]
    positions = map_header_columns(header_cells, TENANT_COLUMNS)

    lines: list[str] = []
    for row in rows[1:]:
        cells = row.find_all("td")
        if not cells:
            continue

        values = {
            key: normalize_text(cells[i].get_text()) if 0 <= i < len(cells) else ""
            for key, i in positions.items()
        }
        if not values["name"]:
            continue

        lines.append(" ".join(v for v in values.values() if v))

    return lines


def extract_security_info(doc: BeautifulSoup) -> str | None:
    secure_building = find_value_by_label(
        doc, re.compile(r"^Secure Building Entry\?", re.IGNORECASE)
    )
    security_system = find_value_by_label(
        doc, re.compile(r"^Security System Present\?", re.IGNORECASE)
    )
    instructions = find_rich_value_by_label(doc, re.compile(r"^Security Instr", re.IGNORECASE))

    parts: list[str] = []
    if secure_building:
        parts.append(f"Secure Building entry? {secure_building}")
    if security_system:
        parts.append(f"Security System: {security_system}")
    if instructions:
        parts.append(f"Instructions: {instructions}")

    return " | ".join(parts) if parts else None


def extract_key_info(doc: BeautifulSoup) -> str | None:
    key_number = find_value_by_label(doc, re.compile(r"^Key Number", re.IGNORECASE))
    lock_box_num = find_value_by_label(doc, re.compile(r"^Lock Box Num", re.IGNORECASE))
    lock_box_code = find_value_by_label(doc, re.compile(r"^Lock Box Code", re.IGNORECASE))
    lock_box_location = find_value_by_label(
        doc, re.compile(r"^Lock Box Location", re.IGNORECASE)
    )

    parts = [
        f"Key Number: {key_number}" if key_number else "",
        f"Lockbox Location: {lock_box_location}" if lock_box_location else "",
        f"Lockbox Number: {lock_box_num}" if lock_box_num else "",
        f"Lockbox Code: {lock_box_code}" if lock_box_code else "",
    ]
    parts = [p for p in parts if p]
    return " ".join(parts) if parts else None


def _or_na(value: object) -> str:
    return str(value) if value else "N/A"


def _plain(doc: BeautifulSoup, pattern: str) -> str | None:
    return find_value_by_label(doc, re.compile(pattern, re.IGNORECASE)) or None


# Free-text fields, rendered with line breaks kept
FLOORING_LABEL = re.compile(r"^Flooring$", re.IGNORECASE)
APPLIANCES_LABEL = re.compile(r"^Appliances$", re.IGNORECASE)
AIR_FILTERS_LABEL = re.compile(r"^Air Filter -Sizes and Locations", re.IGNORECASE)
DRIVING_DIRECTIONS_LABEL = re.compile(r"^Driving Directions", re.IGNORECASE)


def extract_utilities_line(doc: BeautifulSoup) -> str | None:
    water_shutoff = _plain(doc, r"^Water Cut-Off Location")
    breaker = _plain(doc, r"^Breaker Box Location")
    if not (water_shutoff or breaker):
        return None
    return f"Water Shut-off: {_or_na(water_shutoff)} Breaker Box: {_or_na(breaker)}"


def extract_heating_line(doc: BeautifulSoup) -> str | None:
    heater_type = _plain(doc, r"^Water Heater Type")
    heater_location = _plain(doc, r"^Water Heater LOCATION ONLY")
    heat_type = _plain(doc, r"^Heat Type")
    if not (heater_type or heater_location or heat_type):
        return None
    return (
        f"Water Heater Type/Location: {_or_na(heater_type)} / {_or_na(heater_location)} "
        f"Heat Type: {_or_na(heat_type)}"
    )


def extract_property_facts_line(doc: BeautifulSoup) -> str | None:
    """Year built, size (above+below grade), bedrooms and bathrooms."""
    year_built = _plain(doc, r"^Year Property Built")
    sq_ft_above = _plain(doc, r"^Sq Ft Above")
    sq_ft_below = _plain(doc, r"^Sq Ft Below")
    beds = _plain(doc, r"^Num Bedrooms")
    baths = _plain(doc, r"^Num Bathrooms")
    if not (year_built or sq_ft_above or beds or baths):
        return None

    if sq_ft_above or sq_ft_below:
        size = (sq_ft_above or "0") + (f"+{sq_ft_below}" if sq_ft_below else "")
    else:
        size = "N/A"
    return (
        f"Year Property Built: {_or_na(year_built)} Property Size: {size} "
        f"Bedrooms: {_or_na(beds)} Bathrooms: {_or_na(baths)}"
    )


def extract_detectors_line(doc: BeautifulSoup) -> str | None:
    co_detector = _plain(doc, r"^Carbon Monoxide Detector Required")
    smoke_detectors = _plain(doc, r"^Smoke Detector Location")
    if not (co_detector or smoke_detectors):
        return None
    return f"CO Detector: {_or_na(co_detector)} Smoke detectors: {_or_na(smoke_detectors)}"
