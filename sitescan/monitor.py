"""
Crawl Monitor
=============
Running metrics for the worker pool.

Tracks:
- Pages/sec (rolling 30s window + overall)
- Outcome counts per status (scanned, skipped, error)
- Worker utilization and the autoscaler's desired concurrency
- Per-page handler timing (average and p95)

All methods use an asyncio.Lock, so they are safe to call from any worker.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

logger = logging.getLogger(__name__)

_ROLLING_WINDOW_SEC = 30.0


@dataclass
class PageTiming:
    url: str = ""
    total_ms: float = 0.0
    status: str = "scanned"   # scanned | skipped | error


@dataclass
class CrawlMetrics:
    """Snapshot of pool metrics at a point in time."""
    pages_handled: int = 0
    pages_scanned: int = 0
    pages_skipped: int = 0
    pages_failed: int = 0

    pages_per_sec_rolling: float = 0.0
    pages_per_sec_overall: float = 0.0

    queue_size: int = 0
    queue_peak: int = 0

    active_workers: int = 0
    desired_concurrency: int = 0
    max_workers: int = 0

    avg_page_ms: float = 0.0
    p95_page_ms: float = 0.0

    elapsed_sec: float = 0.0
    stop_reason: str = ""


class CrawlMonitor:
    """
    Usage::

        monitor = CrawlMonitor(max_workers=25)
        await monitor.start()
        await monitor.record_page(PageTiming(url=url, total_ms=812, status="scanned"))
        metrics = await monitor.snapshot()
        await monitor.stop("completed")
    """

    def __init__(self, max_workers: int = 1, report_interval_s: float = 10.0):
        self._lock = asyncio.Lock()
        self._start_time = 0.0
        self._max_workers = max_workers
        self._report_interval_s = report_interval_s

        self._pages_scanned = 0
        self._pages_skipped = 0
        self._pages_failed = 0

        self._queue_size = 0
        self._queue_peak = 0
        self._active_workers = 0
        self._desired_concurrency = 0

        self._recent_timestamps: Deque[float] = deque()
        self._page_timings: Deque[PageTiming] = deque(maxlen=1000)

        self._reporter_task: Optional[asyncio.Task] = None
        self._running = False
        self._stop_reason = ""

    async def start(self) -> None:
        self._start_time = time.monotonic()
        self._running = True
        self._reporter_task = asyncio.create_task(self._reporter_loop())

    async def stop(self, reason: str = "completed") -> None:
        self._running = False
        self._stop_reason = reason
        if self._reporter_task:
            self._reporter_task.cancel()
            try:
                await self._reporter_task
            except asyncio.CancelledError:
                pass
            self._reporter_task = None

    async def record_page(self, timing: PageTiming) -> None:
        now = time.monotonic()
        async with self._lock:
            if timing.status == "scanned":
                self._pages_scanned += 1
            elif timing.status == "error":
                self._pages_failed += 1
            else:
                self._pages_skipped += 1
            self._recent_timestamps.append(now)
            self._page_timings.append(timing)
            self._prune(now)

    async def update_queue_size(self, size: int) -> None:
        async with self._lock:
            self._queue_size = size
            self._queue_peak = max(self._queue_peak, size)

    async def update_desired_concurrency(self, desired: int) -> None:
        async with self._lock:
            self._desired_concurrency = desired

    async def worker_started(self) -> None:
        async with self._lock:
            self._active_workers += 1

    async def worker_finished(self) -> None:
        async with self._lock:
            self._active_workers = max(0, self._active_workers - 1)

    def _prune(self, now: float) -> None:
        cutoff = now - _ROLLING_WINDOW_SEC
        while self._recent_timestamps and self._recent_timestamps[0] < cutoff:
            self._recent_timestamps.popleft()

    async def snapshot(self) -> CrawlMetrics:
        now = time.monotonic()
        async with self._lock:
            elapsed = now - self._start_time if self._start_time else 0.0
            self._prune(now)
            rolling = len(self._recent_timestamps) / _ROLLING_WINDOW_SEC
            handled = self._pages_scanned + self._pages_skipped + self._pages_failed
            overall = handled / elapsed if elapsed > 0 else 0.0

            timings = sorted(t.total_ms for t in self._page_timings if t.total_ms > 0)
            avg_page = sum(timings) / len(timings) if timings else 0.0
            p95 = timings[min(int(len(timings) * 0.95), len(timings) - 1)] if timings else 0.0

            return CrawlMetrics(
                pages_handled=handled,
                pages_scanned=self._pages_scanned,
                pages_skipped=self._pages_skipped,
                pages_failed=self._pages_failed,
                pages_per_sec_rolling=round(rolling, 2),
                pages_per_sec_overall=round(overall, 2),
                queue_size=self._queue_size,
                queue_peak=self._queue_peak,
                active_workers=self._active_workers,
                desired_concurrency=self._desired_concurrency,
                max_workers=self._max_workers,
                avg_page_ms=round(avg_page, 1),
                p95_page_ms=round(p95, 1),
                elapsed_sec=round(elapsed, 2),
                stop_reason=self._stop_reason,
            )

    async def _reporter_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._report_interval_s)
            if not self._running:
                break
            try:
                m = await self.snapshot()
                logger.info(
                    f"[MONITOR] "
                    f"scanned={m.pages_scanned} "
                    f"skip={m.pages_skipped} "
                    f"fail={m.pages_failed} "
                    f"queue={m.queue_size} "
                    f"workers={m.active_workers}/{m.desired_concurrency} "
                    f"speed={m.pages_per_sec_rolling:.1f} p/s "
                    f"avg={m.avg_page_ms:.0f}ms "
                    f"elapsed={m.elapsed_sec:.0f}s"
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.debug(f"[MONITOR] Reporter error: {e}")

    def format_summary(self, metrics: CrawlMetrics) -> str:
        lines = [
            "=" * 65,
            "  CRAWL SUMMARY",
            "=" * 65,
            f"  Pages handled:       {metrics.pages_handled}",
            f"  Pages scanned:       {metrics.pages_scanned}",
            f"  Pages skipped:       {metrics.pages_skipped}",
            f"  Pages failed:        {metrics.pages_failed}",
            "-" * 65,
            f"  Overall speed:       {metrics.pages_per_sec_overall:.2f} pages/sec",
            f"  Avg page time:       {metrics.avg_page_ms:.0f} ms",
            f"  P95 page time:       {metrics.p95_page_ms:.0f} ms",
            f"  Queue peak:          {metrics.queue_peak}",
            f"  Workers:             {metrics.max_workers}",
            "-" * 65,
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
            "=" * 65,
        ]
        return "\n".join(lines)
