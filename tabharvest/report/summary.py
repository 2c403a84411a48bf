"""
Plain-text summary assembly.

A summary plan is an ordered list of entries over one or more parsed
documents. Each entry belongs to a thematic group (address, tenants, access,
keys, general info); groups that produce output are separated by a divider
line of dashes. Output depends only on the documents and the plan.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from bs4 import BeautifulSoup

from tabharvest.extractor import unit_detail
from tabharvest.extractor.labels import (
    NOT_FOUND,
    LabelMatcher,
    find_rich_value_by_label,
    find_value_by_label,
    parse_html,
)
from tabharvest.utils.logging import get_logger

logger = get_logger(__name__)

DIVIDER = "-" * 99


@dataclass(frozen=True)
class FieldSpec:
    """One label lookup rendered as one line.

    Attributes:
        group: Thematic group the line belongs to.
        matcher: Label prefix or compiled pattern.
        render: Formats the found value into a line.
        document_index: Which document to search.
        rich: Keep line breaks in the value.
        default: Rendered in place of a missing value; None skips the entry.
        title: Printed once before the group's first line of output.
    """

    group: str
    matcher: LabelMatcher
    render: Callable[[str], str]
    document_index: int = 0
    rich: bool = False
    default: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class BlockSpec:
    """A composite renderer producing zero or more lines from one document.

    Attributes:
        group: Thematic group the lines belong to.
        render: Returns the block's lines, or an empty list / None when absent.
        document_index: Which document to render.
        empty_text: Printed when the block renders nothing; None skips it.
        title: Printed once before the group's first line of output.
    """

    group: str
    render: Callable[[BeautifulSoup], Sequence[str] | str | None]
    document_index: int = 0
    empty_text: str | None = None
    title: str | None = None


PlanEntry = FieldSpec | BlockSpec


def labeled(prefix: str) -> Callable[[str], str]:
    """Renderer producing "<prefix>: <value>"."""
    return lambda value: f"{prefix}: {value}"


def _render_field(entry: FieldSpec, doc: BeautifulSoup) -> list[str]:
    finder = find_rich_value_by_label if entry.rich else find_value_by_label
    value = finder(doc, entry.matcher)
    if value is NOT_FOUND:
        if entry.default is None:
            return []
        value = entry.default
    return [entry.render(value)]


def _render_block(entry: BlockSpec, doc: BeautifulSoup) -> list[str]:
    rendered = entry.render(doc)
    if isinstance(rendered, str):
        lines = [rendered] if rendered else []
    else:
        lines = [line for line in rendered or () if line]
    if not lines and entry.empty_text is not None:
        lines = [entry.empty_text]
    return lines


def assemble(documents: Sequence[BeautifulSoup], plan: Sequence[PlanEntry]) -> str:
    """Run the plan against the documents and join the surviving lines.

    Groups appear in the order of their first plan entry. A group title is
    printed once, before the first entry of that group that produced output.

    Raises:
        IndexError: A plan entry references a document that was not supplied.
    """
    group_order: list[str] = []
    group_lines: dict[str, list[str]] = {}
    printed_titles: set[tuple[str, str]] = set()

    for entry in plan:
        if entry.document_index >= len(documents):
            raise IndexError(
                f"Plan entry for group {entry.group!r} references document "
                f"{entry.document_index}, only {len(documents)} supplied"
            )
        doc = documents[entry.document_index]

        if isinstance(entry, FieldSpec):
            lines = _render_field(entry, doc)
        else:
            lines = _render_block(entry, doc)

        if entry.group not in group_lines:
            group_order.append(entry.group)
            group_lines[entry.group] = []
        if not lines:
            continue

        if entry.title and (entry.group, entry.title) not in printed_titles:
            printed_titles.add((entry.group, entry.title))
            group_lines[entry.group].append(entry.title)
        group_lines[entry.group].extend(lines)

    sections = ["\n".join(group_lines[g]) for g in group_order if group_lines[g]]
    return f"\n{DIVIDER}\n".join(sections)


def _tenant_roster(doc: BeautifulSoup) -> list[str]:
    tenants = unit_detail.extract_tenant_lines(doc)
    if not tenants:
        return []
    return [unit_detail.TENANT_HEADER_LINE, *tenants]


GENERAL_INFO_TITLE = "General Property Information:"

UNIT_SUMMARY_PLAN: tuple[PlanEntry, ...] = (
    BlockSpec(
        group="address",
        render=unit_detail.extract_address,
        empty_text="Address: (not found)",
    ),
    BlockSpec(
        group="tenants",
        render=_tenant_roster,
        title="TENANTS:",
        empty_text="No tenant info found",
    ),
    BlockSpec(group="access", render=unit_detail.extract_security_info),
    BlockSpec(group="keys", render=unit_detail.extract_key_info),
    BlockSpec(
        group="general",
        render=unit_detail.extract_utilities_line,
        title=GENERAL_INFO_TITLE,
    ),
    BlockSpec(
        group="general",
        render=unit_detail.extract_heating_line,
        title=GENERAL_INFO_TITLE,
    ),
    BlockSpec(
        group="general",
        render=unit_detail.extract_property_facts_line,
        title=GENERAL_INFO_TITLE,
    ),
    FieldSpec(
        group="general",
        matcher=unit_detail.FLOORING_LABEL,
        render=labeled("Flooring"),
        rich=True,
        title=GENERAL_INFO_TITLE,
    ),
    FieldSpec(
        group="general",
        matcher=unit_detail.APPLIANCES_LABEL,
        render=labeled("Appliances"),
        rich=True,
        title=GENERAL_INFO_TITLE,
    ),
    BlockSpec(
        group="general",
        render=unit_detail.extract_detectors_line,
        title=GENERAL_INFO_TITLE,
    ),
    FieldSpec(
        group="general",
        matcher=unit_detail.AIR_FILTERS_LABEL,
        render=labeled("Air Filters"),
        rich=True,
        title=GENERAL_INFO_TITLE,
    ),
    FieldSpec(
        group="general",
        matcher=unit_detail.DRIVING_DIRECTIONS_LABEL,
        render=labeled("Driving Directions"),
        rich=True,
        title=GENERAL_INFO_TITLE,
    ),
)


def build_unit_summary(unit_html: str) -> str:
    """Assemble the standard summary for a Work App unit detail page."""
    doc = parse_html(unit_html)
    summary = assemble([doc], UNIT_SUMMARY_PLAN)
    logger.debug("Summary assembled", lines=summary.count("\n") + 1)
    return summary
