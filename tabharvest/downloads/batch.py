"""
Bounded-concurrency batch runner.

Sources are processed in fixed waves of `concurrency` jobs. A wave settles
completely (no fail-fast) before a short pause and the next wave, so at most
`concurrency` hidden tabs exist at any time. One failing job never affects
its siblings: it is logged, counted and skipped.

Progress events, in order of occurrence:
    STARTED   (ordinal of the job, total)   once per job as it starts
    COMPLETED (successes so far, total)     once per successful job
    FINISHED  (total, total)                once, after the last wave
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tabharvest.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProgressPhase(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FINISHED = "finished"


@dataclass
class DownloadJob:
    """One source in a batch; index is its submission position."""

    index: int
    source_url: str
    status: JobStatus = JobStatus.PENDING
    result_url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ProgressEvent:
    current: int
    total: int
    detail: str
    phase: ProgressPhase

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "detail": self.detail,
            "phase": self.phase.value,
        }


ProgressListener = Callable[[ProgressEvent], Any]

# Resolves a source to its result URL; None means "nothing to download"
JobFunc = Callable[[str], Awaitable[str | None]]


@dataclass
class BatchResult:
    """succeeded is in completion order; jobs in submission order."""

    succeeded: list[str] = field(default_factory=list)
    failed_count: int = 0
    jobs: list[DownloadJob] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.jobs)

    @property
    def count(self) -> int:
        return len(self.succeeded)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "failed_count": self.failed_count,
            "urls": list(self.succeeded),
        }


def emit_progress(listener: ProgressListener | None, event: ProgressEvent) -> None:
    """Deliver an event; listener errors are logged and dropped."""
    if listener is None:
        return
    try:
        listener(event)
    except Exception as e:
        logger.debug("Progress listener failed", phase=event.phase.value, error=str(e))


async def run_batch(
    sources: Sequence[str],
    per_job: JobFunc,
    *,
    concurrency: int = 5,
    on_progress: ProgressListener | None = None,
    inter_wave_pause: float = 0.5,
    job_timeout: float | None = None,
    item_label: str = "item",
) -> BatchResult:
    """Run per_job over sources in waves.

    A job fails when it returns None, raises, or exceeds job_timeout.

    Args:
        sources: Source URLs, in submission order.
        per_job: Coroutine function resolving one source to its result URL.
        concurrency: Jobs per wave.
        on_progress: Progress listener.
        inter_wave_pause: Seconds between waves (not after the last).
        job_timeout: Optional per-job deadline in seconds.
        item_label: Noun used in progress details ("invoice").

    Returns:
        BatchResult with the successful result URLs and the failure count.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    total = len(sources)
    jobs = [DownloadJob(index=i, source_url=url) for i, url in enumerate(sources)]
    result = BatchResult(jobs=jobs)
    total_waves = (total + concurrency - 1) // concurrency
    start = time.monotonic()

    logger.info(
        "Batch started",
        total=total,
        concurrency=concurrency,
        waves=total_waves,
        item=item_label,
    )

    async def run_job(job: DownloadJob) -> None:
        # gather() runs each job in its own task, so the binding stays per job
        with LogContext(job=job.index + 1, source_url=job.source_url):
            await execute(job)

    async def execute(job: DownloadJob) -> None:
        job.status = JobStatus.RUNNING
        emit_progress(
            on_progress,
            ProgressEvent(
                current=job.index + 1,
                total=total,
                detail=f"Downloading {item_label} {job.index + 1} of {total}",
                phase=ProgressPhase.STARTED,
            ),
        )

        try:
            if job_timeout is not None:
                result_url = await asyncio.wait_for(per_job(job.source_url), timeout=job_timeout)
            else:
                result_url = await per_job(job.source_url)
        except TimeoutError:
            job.status = JobStatus.FAILED
            job.error = f"Timed out after {job_timeout}s"
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e) or type(e).__name__
        else:
            if result_url:
                job.status = JobStatus.SUCCEEDED
                job.result_url = result_url
            else:
                job.status = JobStatus.FAILED
                job.error = "No result"

        if job.status == JobStatus.FAILED:
            result.failed_count += 1
            logger.warning("Batch job failed", error=job.error)
            return

        assert job.result_url is not None
        result.succeeded.append(job.result_url)
        emit_progress(
            on_progress,
            ProgressEvent(
                current=len(result.succeeded),
                total=total,
                detail=f"Downloaded {len(result.succeeded)} of {total} {item_label}s",
                phase=ProgressPhase.COMPLETED,
            ),
        )

    for wave_number, offset in enumerate(range(0, total, concurrency), start=1):
        wave = jobs[offset : offset + concurrency]
        logger.debug(
            "Processing wave",
            wave=wave_number,
            waves=total_waves,
            size=len(wave),
        )
        outcomes = await asyncio.gather(*(run_job(job) for job in wave), return_exceptions=True)
        for job, outcome in zip(wave, outcomes, strict=True):
            # run_job handles job errors itself; anything here escaped it
            if isinstance(outcome, Exception):
                job.status = JobStatus.FAILED
                job.error = str(outcome) or type(outcome).__name__
                result.failed_count += 1
                logger.error("Batch job crashed", index=job.index, error=job.error)

        if offset + concurrency < total and inter_wave_pause > 0:
            await asyncio.sleep(inter_wave_pause)

    logger.info(
        "Batch finished",
        total=total,
        succeeded=len(result.succeeded),
        failed=result.failed_count,
        elapsed=round(time.monotonic() - start, 2),
    )
    emit_progress(
        on_progress,
        ProgressEvent(
            current=total,
            total=total,
            detail=f"Complete! Downloaded {len(result.succeeded)} {item_label}s",
            phase=ProgressPhase.FINISHED,
        ),
    )
    return result
