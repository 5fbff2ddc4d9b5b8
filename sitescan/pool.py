"""
Concurrency / Abort Controller
==============================
Bounded async worker pool over a ``Frontier``.

Each worker repeatedly dequeues one request and awaits the page handler
for it.  After every completed page the pool checks two abort conditions:
the scanned count reaching ``max_requests`` and (when set) the elapsed time
reaching ``scan_duration``.  Either one stops dequeuing; pages already in
flight are allowed to finish.  The pool ends on its own once the frontier
is empty and no worker is busy.

``Autoscaler`` moves the number of workers allowed to pick up new work
between a floor and a ceiling: fast pages scale up by ``up_step``, a streak
of slow pages scales down by ``down_step``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .exceptions import CrawlerResourceError
from .monitor import CrawlMonitor, PageTiming
from .state import CrawlState, Frontier, Request
from .utils import Stopwatch

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    COMPLETED = "completed"
    MAX_REQUESTS = "max requests per crawl reached"
    SCAN_DURATION = "scan duration reached"
    FATAL = "fatal resource error"


@dataclass
class CrawlBudget:
    """Page cap plus optional wall-clock budget (seconds, 0 = none)."""
    max_requests: int
    scan_duration: float = 0
    stopwatch: Stopwatch = field(default_factory=Stopwatch)

    @property
    def remaining_duration(self) -> float:
        if not self.scan_duration:
            return 0
        return max(0.0, self.scan_duration - self.stopwatch.elapsed)

    def exceeded(self, state: CrawlState) -> Optional[StopReason]:
        if state.num_scanned >= self.max_requests:
            return StopReason.MAX_REQUESTS
        if self.scan_duration and self.stopwatch.elapsed >= self.scan_duration:
            return StopReason.SCAN_DURATION
        return None


class Autoscaler:
    def __init__(
        self,
        min_concurrency: int = 1,
        max_concurrency: int = 25,
        up_step: int = 2,
        down_step: int = 1,
        slow_threshold_s: float = 15.0,
        slow_streak: int = 3,
    ):
        self.min_concurrency = min_concurrency
        self.max_concurrency = max_concurrency
        self.up_step = up_step
        self.down_step = down_step
        self.slow_threshold_s = slow_threshold_s
        self.slow_streak = slow_streak
        self.desired = min_concurrency
        self._slow_count = 0

    def record(self, duration_s: float) -> int:
        """Feed one page's handling time; returns the new desired concurrency."""
        if duration_s >= self.slow_threshold_s:
            self._slow_count += 1
            if self._slow_count >= self.slow_streak:
                self.desired = max(self.min_concurrency, self.desired - self.down_step)
                self._slow_count = 0
        else:
            self._slow_count = 0
            self.desired = min(self.max_concurrency, self.desired + self.up_step)
        return self.desired


PageHandler = Callable[[Request, int], Awaitable[Optional[str]]]


class CrawlerPool:
    """
    Usage::

        pool = CrawlerPool(frontier, state, handler, budget, autoscaler)
        reason = await pool.run()

    *handler* is ``async handler(request, worker_id) -> status`` where status
    is one of ``scanned`` / ``skipped`` / ``error`` (used for metrics only).
    It must not raise for page-level failures; a ``CrawlerResourceError``
    stops the pool and is re-raised from ``run()``.
    """

    def __init__(
        self,
        frontier: Frontier,
        state: CrawlState,
        handler: PageHandler,
        budget: CrawlBudget,
        autoscaler: Optional[Autoscaler] = None,
        monitor: Optional[CrawlMonitor] = None,
        idle_poll_s: float = 0.05,
    ):
        self.frontier = frontier
        self.state = state
        self.handler = handler
        self.budget = budget
        self.autoscaler = autoscaler or Autoscaler()
        self.monitor = monitor or CrawlMonitor(max_workers=self.autoscaler.max_concurrency)
        self.idle_poll_s = idle_poll_s

        self._active = 0
        self._stop_reason: Optional[StopReason] = None
        self._fatal: Optional[CrawlerResourceError] = None

    @property
    def aborted(self) -> bool:
        return self._stop_reason is not None

    @property
    def stop_reason(self) -> Optional[StopReason]:
        return self._stop_reason

    def abort(self, reason: StopReason) -> None:
        """Stop dequeuing; in-flight pages finish.  The first reason wins."""
        if self._stop_reason is None:
            self._stop_reason = reason
            logger.info(
                f"[POOL] Aborting: {reason.value} "
                f"(scanned={self.state.num_scanned}, pending={self.frontier.pending})"
            )

    def check_abort(self) -> bool:
        reason = self.budget.exceeded(self.state)
        if reason:
            self.abort(reason)
        return self.aborted

    async def run(self) -> StopReason:
        logger.info(
            f"[POOL] Starting with concurrency {self.autoscaler.desired}"
            f"-{self.autoscaler.max_concurrency}, pending={self.frontier.pending}"
        )
        self.check_abort()
        await self.monitor.start()
        workers: List[asyncio.Task] = [
            asyncio.create_task(self._worker(i))
            for i in range(self.autoscaler.max_concurrency)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for w in workers:
                if not w.done():
                    w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            reason = self._stop_reason or StopReason.COMPLETED
            await self.monitor.stop(reason.value)
            logger.info("\n" + self.monitor.format_summary(await self.monitor.snapshot()))

        if self._fatal is not None:
            raise self._fatal
        return self._stop_reason or StopReason.COMPLETED

    async def _worker(self, worker_id: int) -> None:
        while not self.aborted:
            if worker_id >= self.autoscaler.desired:
                if self._active == 0 and self.frontier.pending == 0:
                    break
                await asyncio.sleep(self.idle_poll_s)
                continue

            request = self.frontier.next_request()
            if request is None:
                if self._active == 0:
                    break
                await asyncio.sleep(self.idle_poll_s)
                continue

            # counted as active before any await so idle workers keep polling
            self._active += 1
            started = time.monotonic()
            status = "error"
            try:
                await self.monitor.update_queue_size(self.frontier.pending)
                await self.monitor.worker_started()
                status = await self.handler(request, worker_id) or "skipped"
            except asyncio.CancelledError:
                raise
            except CrawlerResourceError as e:
                logger.error(f"[POOL] Worker {worker_id} hit a fatal resource error: {e}")
                self._fatal = e
                self.abort(StopReason.FATAL)
            except Exception as e:
                logger.error(f"[POOL] Worker {worker_id} unexpected error on {request.url}: {e}", exc_info=True)
            finally:
                duration = time.monotonic() - started
                self._active -= 1
                await self.monitor.worker_finished()

            await self.monitor.record_page(
                PageTiming(url=request.url, total_ms=duration * 1000, status=status)
            )
            await self.monitor.update_desired_concurrency(self.autoscaler.record(duration))
            self.check_abort()
