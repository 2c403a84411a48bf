"""
tabharvest utilities module.
"""

from tabharvest.utils.config import ensure_directories, get_project_root, get_settings
from tabharvest.utils.logging import LogContext, configure_logging, get_logger
from tabharvest.utils.polling import PollOutcome, PollPolicy, PollStatus, poll

__all__ = [
    # Config
    "get_settings",
    "get_project_root",
    "ensure_directories",
    # Logging
    "get_logger",
    "configure_logging",
    "LogContext",
    # Polling
    "poll",
    "PollPolicy",
    "PollOutcome",
    "PollStatus",
]
