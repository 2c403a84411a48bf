"""
Text report assembly.
"""

from tabharvest.report.summary import (
    DIVIDER,
    UNIT_SUMMARY_PLAN,
    BlockSpec,
    FieldSpec,
    assemble,
    build_unit_summary,
)

__all__ = [
    "DIVIDER",
    "UNIT_SUMMARY_PLAN",
    "BlockSpec",
    "FieldSpec",
    "assemble",
    "build_unit_summary",
]
