"""
HTML extraction: label/value lookups and per-page field extractors.
"""

from tabharvest.extractor.labels import (
    NOT_FOUND,
    LabelValuePair,
    find_label_value_pairs,
    find_rich_value_by_label,
    find_value_by_label,
    parse_html,
)

__all__ = [
    "NOT_FOUND",
    "LabelValuePair",
    "find_label_value_pairs",
    "find_rich_value_by_label",
    "find_value_by_label",
    "parse_html",
]
