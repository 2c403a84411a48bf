"""
Tests for the bounded-concurrency batch runner (tabharvest.downloads.batch).

Test Perspectives Table:
| Case ID | Input / Precondition | Perspective | Expected Result | Notes |
|---------|---------------------|-------------|-----------------|-------|
| TC-N-01 | 7 sources, concurrency 5, job 2 times out | Normal | 6 succeeded, 1 failed | Two waves |
| TC-N-02 | Progress events | Normal | 7 STARTED, 6 COMPLETED, 1 FINISHED | |
| TC-B-01 | Concurrency bound | Boundary | Never more than 5 in flight | |
| TC-B-02 | Empty source list | Boundary | Empty result, FINISHED 0/0 | |
| TC-A-01 | Job raises / returns None | Abnormal | Counted failed, siblings unaffected | |
| TC-A-02 | Listener raises | Abnormal | Batch unaffected | |
| TC-A-03 | concurrency=0 | Abnormal | ValueError | |
"""

from __future__ import annotations

import asyncio

import pytest

from tabharvest.downloads.batch import (
    BatchResult,
    JobStatus,
    ProgressEvent,
    ProgressPhase,
    run_batch,
)

SOURCES = [f"https://app.propertymeld.com/payments/{i}/summary/" for i in range(7)]


def _result_url(source: str) -> str:
    return source.replace("/summary/", "/invoice.pdf")


class TestRunBatch:
    # =========================================================================
    # TC-N-01 / TC-N-02: Seven sources, one timeout
    # =========================================================================
    @pytest.mark.asyncio
    async def test_one_timeout_in_seven(self) -> None:
        """
        Given: 7 sources, concurrency 5, and job 2 hanging past its deadline
        When: The batch runs
        Then: 6 results and 1 failure; 7 starts, 6 completions and one finish are reported
        """
        # Given
        events: list[ProgressEvent] = []

        async def per_job(source: str) -> str:
            if source == SOURCES[2]:
                await asyncio.sleep(10)
            return _result_url(source)

        # When
        result = await run_batch(
            SOURCES,
            per_job,
            concurrency=5,
            on_progress=events.append,
            inter_wave_pause=0,
            job_timeout=0.1,
            item_label="invoice",
        )

        # Then
        assert result.count == 6
        assert result.failed_count == 1
        assert sorted(result.succeeded) == sorted(_result_url(s) for s in SOURCES if s != SOURCES[2])
        assert result.to_dict() == {
            "count": 6,
            "failed_count": 1,
            "urls": result.succeeded,
        }

        failed = result.jobs[2]
        assert failed.status == JobStatus.FAILED
        assert "Timed out" in failed.error
        assert [job.index for job in result.jobs] == list(range(7))

        phases = [e.phase for e in events]
        assert phases.count(ProgressPhase.STARTED) == 7
        assert phases.count(ProgressPhase.COMPLETED) == 6
        assert phases.count(ProgressPhase.FINISHED) == 1
        assert events[-1] == ProgressEvent(
            current=7,
            total=7,
            detail="Complete! Downloaded 6 invoices",
            phase=ProgressPhase.FINISHED,
        )
        assert {e.total for e in events} == {7}

    @pytest.mark.asyncio
    async def test_progress_details(self) -> None:
        events: list[ProgressEvent] = []

        async def per_job(source: str) -> str:
            return _result_url(source)

        await run_batch(SOURCES[:2], per_job, concurrency=1, on_progress=events.append,
                        inter_wave_pause=0, item_label="invoice")

        assert [e.to_dict() for e in events] == [
            {"current": 1, "total": 2, "detail": "Downloading invoice 1 of 2", "phase": "started"},
            {"current": 1, "total": 2, "detail": "Downloaded 1 of 2 invoices", "phase": "completed"},
            {"current": 2, "total": 2, "detail": "Downloading invoice 2 of 2", "phase": "started"},
            {"current": 2, "total": 2, "detail": "Downloaded 2 of 2 invoices", "phase": "completed"},
            {"current": 2, "total": 2, "detail": "Complete! Downloaded 2 invoices", "phase": "finished"},
        ]

    # =========================================================================
    # TC-B-01: Never more than `concurrency` jobs in flight
    # =========================================================================
    @pytest.mark.asyncio
    async def test_concurrency_bound(self) -> None:
        """
        Given: 12 sources and concurrency 5
        When: The batch runs
        Then: At most 5 jobs run at once
        """
        in_flight = 0
        peak = 0

        async def per_job(source: str) -> str:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return source

        sources = [f"https://example.test/{i}" for i in range(12)]
        result = await run_batch(sources, per_job, concurrency=5, inter_wave_pause=0)

        assert peak == 5
        assert result.count == 12
        assert in_flight == 0

    @pytest.mark.asyncio
    async def test_pause_between_waves_only(self, monkeypatch) -> None:
        sleeps: list[float] = []
        real_sleep = asyncio.sleep

        async def recording_sleep(delay, *args, **kwargs):
            sleeps.append(delay)
            await real_sleep(0)

        monkeypatch.setattr("tabharvest.downloads.batch.asyncio.sleep", recording_sleep)

        async def per_job(source: str) -> str:
            return source

        await run_batch(SOURCES, per_job, concurrency=3, inter_wave_pause=0.5)

        # 3 waves (3 + 3 + 1), pauses after the first two only
        assert sleeps == [0.5, 0.5]

    # =========================================================================
    # TC-B-02: Nothing to do
    # =========================================================================
    @pytest.mark.asyncio
    async def test_empty_sources(self) -> None:
        events: list[ProgressEvent] = []

        async def per_job(source: str) -> str:
            raise AssertionError("no jobs expected")

        result = await run_batch([], per_job, on_progress=events.append)

        assert result == BatchResult()
        assert [e.phase for e in events] == [ProgressPhase.FINISHED]
        assert events[0].current == 0 and events[0].total == 0

    # =========================================================================
    # TC-A-01: Failures are isolated
    # =========================================================================
    @pytest.mark.asyncio
    async def test_failures_isolated(self) -> None:
        """
        Given: One job raising, one returning None, the rest succeeding
        When: The batch runs in a single wave
        Then: Both failures are counted; siblings still succeed
        """

        async def per_job(source: str) -> str | None:
            if source == SOURCES[0]:
                raise RuntimeError("tab refused")
            if source == SOURCES[1]:
                return None
            await asyncio.sleep(0.01)
            return _result_url(source)

        result = await run_batch(SOURCES[:4], per_job, concurrency=5, inter_wave_pause=0)

        assert result.failed_count == 2
        assert result.count == 2
        assert result.jobs[0].error == "tab refused"
        assert result.jobs[1].error == "No result"
        assert [job.status for job in result.jobs] == [
            JobStatus.FAILED,
            JobStatus.FAILED,
            JobStatus.SUCCEEDED,
            JobStatus.SUCCEEDED,
        ]
        assert result.jobs[2].result_url == _result_url(SOURCES[2])

    # =========================================================================
    # TC-A-02: A broken listener never breaks the batch
    # =========================================================================
    @pytest.mark.asyncio
    async def test_listener_errors_ignored(self) -> None:
        def listener(event: ProgressEvent) -> None:
            raise RuntimeError("UI gone")

        async def per_job(source: str) -> str:
            return source

        result = await run_batch(SOURCES[:3], per_job, on_progress=listener, inter_wave_pause=0)

        assert result.count == 3

    # =========================================================================
    # TC-A-03: Invalid concurrency
    # =========================================================================
    @pytest.mark.asyncio
    async def test_invalid_concurrency(self) -> None:
        async def per_job(source: str) -> str:
            return source

        with pytest.raises(ValueError, match="concurrency"):
            await run_batch(SOURCES, per_job, concurrency=0)
