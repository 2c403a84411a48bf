"""
Downloads: correlation table, download manager, batch runner and invoice flows.
"""

from tabharvest.downloads.batch import (
    BatchResult,
    DownloadJob,
    JobStatus,
    ProgressEvent,
    ProgressPhase,
    run_batch,
)
from tabharvest.downloads.correlator import FilenameCorrelator
from tabharvest.downloads.invoices import InvoiceDownloader, download_files
from tabharvest.downloads.manager import DownloadManager

__all__ = [
    "BatchResult",
    "DownloadJob",
    "DownloadManager",
    "FilenameCorrelator",
    "InvoiceDownloader",
    "JobStatus",
    "ProgressEvent",
    "ProgressPhase",
    "download_files",
    "run_batch",
]
