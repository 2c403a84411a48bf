"""
Label/value extraction from tabular HTML.

Locates a field by the text of its caption cell instead of a fixed selector:
scan every td/th in document order, take the first cell whose text matches
the label, and return the text of the next cell in the same row. Works on any
two-column-per-row layout, which lets a single sweep over a record page
harvest dozens of unrelated fields.

Two value renderings:
- plain: whitespace runs (NBSP included) collapsed to one space, trimmed
- rich: <br> kept as line breaks, blank lines and NUL/CR removed

Absence is a value (NOT_FOUND), never an exception.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

LabelMatcher = str | re.Pattern[str]

_CELL_TAGS = ["td", "th"]
_WHITESPACE_RE = re.compile(r"\s+")
_HSPACE_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{2,}")


class _NotFound:
    """Falsy sentinel for a label or value that is not on the page."""

    _instance: _NotFound | None = None

    def __new__(cls) -> _NotFound:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()


@dataclass(frozen=True)
class LabelValuePair:
    """A located field."""

    label: str
    value: str
    rich: bool = False


def parse_html(html: str) -> BeautifulSoup:
    """Parse an HTML document with the stdlib-backed parser."""
    return BeautifulSoup(html, "html.parser")


def normalize_text(text: str) -> str:
    """Collapse all whitespace (NBSP included) to single spaces and trim."""
    return _WHITESPACE_RE.sub(" ", text.replace("\xa0", " ")).strip()


def matches_label(text: str, matcher: LabelMatcher) -> bool:
    """Check a cell's stripped text against a matcher.

    Strings match as a prefix ("Key Number" matches "Key Number:"); compiled
    patterns match with search(), so anchor them with ^ where needed.
    """
    text = text.strip()
    if isinstance(matcher, str):
        return text.startswith(matcher)
    return matcher.search(text) is not None


def find_label_cell(
    doc: BeautifulSoup | Tag,
    matcher: LabelMatcher,
    *,
    occurrence: int = 0,
    scope: Tag | None = None,
) -> Tag | None:
    """Return the label cell, or None.

    Args:
        doc: Parsed document.
        matcher: Label prefix or compiled pattern.
        occurrence: Which match to take (0 = first in document order).
        scope: Restrict the search to this subtree, e.g. the section
            surrounding an anchor element, when a label repeats on the page.
    """
    if occurrence < 0:
        raise ValueError("occurrence must be non-negative")

    root = scope if scope is not None else doc
    seen = 0
    for cell in root.find_all(_CELL_TAGS):
        if matches_label(cell.get_text(), matcher):
            if seen == occurrence:
                return cell
            seen += 1
    return None


def _value_cell(
    doc: BeautifulSoup | Tag,
    matcher: LabelMatcher,
    occurrence: int,
    scope: Tag | None,
) -> Tag | None:
    label_cell = find_label_cell(doc, matcher, occurrence=occurrence, scope=scope)
    if label_cell is None:
        return None
    return label_cell.find_next_sibling(_CELL_TAGS)


def find_value_by_label(
    doc: BeautifulSoup | Tag,
    matcher: LabelMatcher,
    *,
    occurrence: int = 0,
    scope: Tag | None = None,
) -> str | _NotFound:
    """Plain-text value next to a label.

    Returns:
        The whitespace-collapsed value, or NOT_FOUND when the label is absent,
        is the last cell of its row, or the value cell is empty.
    """
    cell = _value_cell(doc, matcher, occurrence, scope)
    if cell is None:
        return NOT_FOUND
    return normalize_text(cell.get_text()) or NOT_FOUND


def rich_text(cell: Tag) -> str:
    """Render a cell keeping <br> line breaks.

    Source-formatting whitespace collapses as a browser would render it; each
    <br> becomes a newline, blank lines collapse, NUL and CR are dropped.
    """
    parts: list[str] = []
    for node in cell.descendants:
        if isinstance(node, Tag):
            if node.name == "br":
                parts.append("\n")
        elif isinstance(node, NavigableString) and not isinstance(node, Comment):
            parts.append(_WHITESPACE_RE.sub(" ", str(node)))

    text = "".join(parts).replace("\xa0", " ").replace("\r", "").replace("\x00", "")
    lines = [_HSPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_LINES_RE.sub("\n", "\n".join(lines)).strip()


def find_rich_value_by_label(
    doc: BeautifulSoup | Tag,
    matcher: LabelMatcher,
    *,
    occurrence: int = 0,
    scope: Tag | None = None,
) -> str | _NotFound:
    """Value next to a label with line breaks preserved.

    Used for multi-line free text (security instructions, directions) that the
    plain variant would flatten onto one line.
    """
    cell = _value_cell(doc, matcher, occurrence, scope)
    if cell is None:
        return NOT_FOUND
    return rich_text(cell) or NOT_FOUND


def find_label_value_pairs(
    doc: BeautifulSoup | Tag,
    matchers: Iterable[LabelMatcher],
    *,
    rich: bool = False,
) -> list[LabelValuePair]:
    """Sweep a document for many labels; missing ones are skipped."""
    pairs: list[LabelValuePair] = []
    finder = find_rich_value_by_label if rich else find_value_by_label
    for matcher in matchers:
        value = finder(doc, matcher)
        if value is NOT_FOUND:
            continue
        label = matcher if isinstance(matcher, str) else matcher.pattern
        pairs.append(LabelValuePair(label=label, value=value, rich=rich))
    return pairs
