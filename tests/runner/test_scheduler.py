"""Tests for the refresh scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from trendscan.core.types import BatchResult
from trendscan.runner.scheduler import RefreshScheduler


@pytest.fixture
def refresher():
    refresher = MagicMock()
    refresher.add_new_tokens = AsyncMock(return_value=BatchResult(processed=3, updated=3))
    refresher.update_all_scores = AsyncMock(return_value=BatchResult(processed=5, updated=5))
    return refresher


class TestRefreshScheduler:
    """Test the recurring two-phase refresh."""

    @pytest.mark.asyncio
    async def test_run_once_runs_both_phases(self, refresher):
        """Test run once runs both phases."""
        scheduler = RefreshScheduler(
            refresher, new_token_days=1, max_new_tokens=300, concurrency=10
        )

        await scheduler.run_once()

        refresher.add_new_tokens.assert_awaited_once()
        kwargs = refresher.add_new_tokens.await_args.kwargs
        assert kwargs["days"] == 1
        assert kwargs["max_new_tokens"] == 300
        assert isinstance(kwargs["stop_event"], asyncio.Event)

        refresher.update_all_scores.assert_awaited_once()
        assert refresher.update_all_scores.await_args.kwargs["concurrency"] == 10
        assert scheduler.runs == 1

    @pytest.mark.asyncio
    async def test_failing_phase_does_not_stop_refresh(self, refresher):
        """Test failing phase does not stop refresh."""
        refresher.add_new_tokens.side_effect = RuntimeError("discovery down")
        scheduler = RefreshScheduler(refresher)

        await scheduler.run_once()

        refresher.update_all_scores.assert_awaited_once()
        assert scheduler.runs == 1

    @pytest.mark.asyncio
    async def test_timer_fires_repeatedly(self, refresher):
        """Test timer fires repeatedly."""
        scheduler = RefreshScheduler(refresher, interval_seconds=0.01)

        await scheduler.start()
        for _ in range(200):
            if scheduler.runs >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.runs >= 2
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_failure_keeps_timer_alive(self, refresher):
        """Test failure keeps timer alive."""
        refresher.update_all_scores.side_effect = RuntimeError("cache down")
        scheduler = RefreshScheduler(refresher, interval_seconds=0.01)

        await scheduler.start()
        for _ in range(200):
            if scheduler.runs >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.runs >= 2

    @pytest.mark.asyncio
    async def test_run_on_start(self, refresher):
        """Test run on start."""
        scheduler = RefreshScheduler(refresher, interval_seconds=3600, run_on_start=True)

        await scheduler.start()
        for _ in range(100):
            if scheduler.runs:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.runs == 1

    @pytest.mark.asyncio
    async def test_stop_waits_for_inflight_batch(self, refresher):
        """Test stop waits for inflight batch."""
        finished = asyncio.Event()

        async def update_all_scores(concurrency, stop_event):
            await stop_event.wait()
            finished.set()
            return BatchResult(cancelled=True)

        refresher.update_all_scores.side_effect = update_all_scores
        scheduler = RefreshScheduler(refresher, interval_seconds=3600, run_on_start=True)

        await scheduler.start()
        for _ in range(100):
            if refresher.update_all_scores.await_count:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert finished.is_set()
        assert scheduler.runs == 1

    @pytest.mark.asyncio
    async def test_stop_skips_second_phase(self, refresher):
        """Test stop skips second phase."""
        scheduler = RefreshScheduler(refresher)

        async def add_new_tokens(days, max_new_tokens, stop_event):
            stop_event.set()
            return BatchResult(cancelled=True)

        refresher.add_new_tokens.side_effect = add_new_tokens

        await scheduler.run_once()

        refresher.update_all_scores.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, refresher):
        """Test stop without start."""
        scheduler = RefreshScheduler(refresher)

        await scheduler.stop()

        assert not scheduler.running
