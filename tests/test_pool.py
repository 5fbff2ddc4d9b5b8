"""
Tests for pool.py: termination, page cap, time budget and fatal errors.
"""

import asyncio

import pytest

from sitescan.exceptions import BrowserLaunchError, CrawlerResourceError
from sitescan.monitor import CrawlMonitor
from sitescan.pool import Autoscaler, CrawlBudget, CrawlerPool, StopReason
from sitescan.state import CrawlState, Frontier, PageInfo, Request


def seeded(n, max_requests=100):
    state = CrawlState()
    frontier = Frontier(state, max_requests)
    frontier.enqueue_many(Request(url=f"https://example.com/{i}") for i in range(n))
    return state, frontier


def committing_handler(state, max_requests, delay=0.0):
    async def handler(request, worker_id):
        await asyncio.sleep(delay)
        state.commit_scan(PageInfo(url=request.url), max_requests=max_requests)
        return "scanned"
    return handler


def run_pool(state, frontier, handler, budget, **autoscale):
    async def run():
        pool = CrawlerPool(
            frontier, state, handler, budget,
            autoscaler=Autoscaler(**autoscale),
            idle_poll_s=0.001,
        )
        reason = await pool.run()
        return pool, reason
    return asyncio.run(run())


class TestTermination:

    def test_completes_when_frontier_drains(self):
        state, frontier = seeded(6)
        _, reason = run_pool(state, frontier, committing_handler(state, 100), CrawlBudget(100),
                             min_concurrency=2, max_concurrency=4)
        assert reason is StopReason.COMPLETED
        assert state.num_scanned == 6
        assert frontier.pending == 0

    def test_work_enqueued_by_handler_is_processed(self):
        state, frontier = seeded(1)

        async def handler(request, worker_id):
            index = int(request.url.rsplit("/", 1)[-1])
            if index < 4:
                frontier.enqueue_if_new(Request(url=f"https://example.com/{index + 1}"))
            state.commit_scan(PageInfo(url=request.url))
            return "scanned"

        _, reason = run_pool(state, frontier, handler, CrawlBudget(100), max_concurrency=3)
        assert reason is StopReason.COMPLETED
        assert sorted(p.url for p in state.scanned) == [f"https://example.com/{i}" for i in range(5)]

    def test_idle_workers_wait_while_a_page_is_starting(self):
        state, frontier = seeded(1)
        workers = set()

        class SlowQueueMonitor(CrawlMonitor):
            async def update_queue_size(self, size):
                await asyncio.sleep(0.01)
                await super().update_queue_size(size)

        async def handler(request, worker_id):
            workers.add(worker_id)
            if request.url.endswith("/0"):
                frontier.enqueue_many(Request(url=f"https://example.com/child-{i}") for i in range(3))
            await asyncio.sleep(0.02)
            state.commit_scan(PageInfo(url=request.url))
            return "scanned"

        async def run():
            pool = CrawlerPool(
                frontier, state, handler, CrawlBudget(100),
                autoscaler=Autoscaler(min_concurrency=4, max_concurrency=4),
                monitor=SlowQueueMonitor(max_workers=4),
                idle_poll_s=0.001,
            )
            return await pool.run()

        assert asyncio.run(run()) is StopReason.COMPLETED
        assert state.num_scanned == 4
        assert len(workers) > 1

    def test_monitor_counts_every_handled_page(self):
        state, frontier = seeded(4)
        statuses = iter(["scanned", "skipped", "error", "scanned"])

        async def handler(request, worker_id):
            state.commit_scan(PageInfo(url=request.url))
            return next(statuses)

        async def run():
            monitor = CrawlMonitor(max_workers=1)
            pool = CrawlerPool(frontier, state, handler, CrawlBudget(100),
                               autoscaler=Autoscaler(max_concurrency=1),
                               monitor=monitor, idle_poll_s=0.001)
            await pool.run()
            return await monitor.snapshot()

        metrics = asyncio.run(run())
        assert metrics.pages_handled == 4
        assert (metrics.pages_scanned, metrics.pages_skipped, metrics.pages_failed) == (2, 1, 1)
        assert metrics.stop_reason == "completed"
        assert metrics.active_workers == 0

    def test_empty_frontier(self):
        state, frontier = seeded(0)
        _, reason = run_pool(state, frontier, committing_handler(state, 100), CrawlBudget(100))
        assert reason is StopReason.COMPLETED


class TestBudgets:

    @pytest.mark.parametrize("concurrency", [1, 4])
    def test_page_cap_stops_dequeuing(self, concurrency):
        state, frontier = seeded(20, max_requests=5)
        _, reason = run_pool(
            state, frontier, committing_handler(state, 5, delay=0.001), CrawlBudget(5),
            min_concurrency=concurrency, max_concurrency=concurrency,
        )
        assert reason is StopReason.MAX_REQUESTS
        assert state.num_scanned == 5
        assert frontier.pending > 0
        assert len(state.exceeded_requests) <= concurrency - 1

    def test_scan_duration_stops_dequeuing(self):
        state, frontier = seeded(200)
        _, reason = run_pool(
            state, frontier, committing_handler(state, 1000, delay=0.01),
            CrawlBudget(1000, scan_duration=0.1),
            max_concurrency=1,
        )
        assert reason is StopReason.SCAN_DURATION
        assert 0 < state.num_scanned < 200

    def test_budget_remaining_duration(self):
        assert CrawlBudget(10).remaining_duration == 0
        assert 0 < CrawlBudget(10, scan_duration=60).remaining_duration <= 60


class TestErrors:

    def test_page_errors_do_not_stop_the_pool(self):
        state, frontier = seeded(5)

        async def handler(request, worker_id):
            if request.url.endswith("/2"):
                raise ValueError("handler bug")
            state.commit_scan(PageInfo(url=request.url))
            return "scanned"

        _, reason = run_pool(state, frontier, handler, CrawlBudget(100), max_concurrency=2)
        assert reason is StopReason.COMPLETED
        assert state.num_scanned == 4

    def test_resource_error_is_fatal(self):
        state, frontier = seeded(10)
        holder = {}

        async def handler(request, worker_id):
            if request.url.endswith("/1"):
                raise BrowserLaunchError("chromium exited")
            state.commit_scan(PageInfo(url=request.url))
            return "scanned"

        async def run():
            pool = CrawlerPool(frontier, state, handler, CrawlBudget(100),
                               autoscaler=Autoscaler(max_concurrency=1), idle_poll_s=0.001)
            holder["pool"] = pool
            await pool.run()

        with pytest.raises(CrawlerResourceError):
            asyncio.run(run())
        assert holder["pool"].stop_reason is StopReason.FATAL
        assert frontier.pending == 8

    def test_first_abort_reason_wins(self):
        state, frontier = seeded(0)
        pool = CrawlerPool(frontier, state, committing_handler(state, 1), CrawlBudget(1))
        pool.abort(StopReason.SCAN_DURATION)
        pool.abort(StopReason.MAX_REQUESTS)
        assert pool.aborted
        assert pool.stop_reason is StopReason.SCAN_DURATION


class TestAutoscaler:

    def test_fast_pages_scale_up_to_ceiling(self):
        scaler = Autoscaler(min_concurrency=1, max_concurrency=6, up_step=2, slow_threshold_s=1.0)
        assert [scaler.record(0.1) for _ in range(4)] == [3, 5, 6, 6]

    def test_slow_streak_scales_down_to_floor(self):
        scaler = Autoscaler(min_concurrency=2, max_concurrency=10, down_step=1, slow_threshold_s=1.0)
        scaler.desired = 4
        results = [scaler.record(5.0) for _ in range(9)]
        assert results == [4, 4, 3, 3, 3, 2, 2, 2, 2]

    def test_fast_page_resets_slow_streak(self):
        scaler = Autoscaler(min_concurrency=1, max_concurrency=10, up_step=1, slow_threshold_s=1.0)
        scaler.desired = 5
        scaler.record(5.0)
        scaler.record(5.0)
        scaler.record(0.1)
        scaler.record(5.0)
        assert scaler.desired == 6
