"""
Work App records API.
"""

from tabharvest.records.client import RecordsClient, parse_issue_id

__all__ = ["RecordsClient", "parse_issue_id"]
