"""
Browser access: CDP connection and hidden tab sessions.
"""

from tabharvest.browser.connection import BrowserConnection
from tabharvest.browser.tab_session import TabSession, TabState, open_tab

__all__ = [
    "BrowserConnection",
    "TabSession",
    "TabState",
    "open_tab",
]
