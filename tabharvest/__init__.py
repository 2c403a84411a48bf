"""
tabharvest - hidden-tab data retrieval for web applications.

Opens background browser tabs, waits for their SPA UIs to render, asks a page
agent for DOM-derived facts, and turns them into text summaries or batches of
file downloads.
"""

__version__ = "0.1.0"
