"""
Exploration Monitor
===================
Per-step metrics for one exploration run.

Tracks:
- Click outcomes (new state, duplicate, no change, failed, external, limit)
- Returns to the parent (native history vs direct reload)
- Per-step timing (click, settle, total) with average and P95

Exploration is serial, so the monitor is a plain synchronous object.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Dict

logger = logging.getLogger(__name__)

STEP_STATUSES = ("new", "duplicate", "no_change", "failed", "external", "limit")


@dataclass
class StepTiming:
    """Timing breakdown for one followed link."""
    node_id: str = ""
    href: str = ""
    click_ms: float = 0.0
    settle_ms: float = 0.0
    total_ms: float = 0.0
    status: str = "new"


@dataclass
class ExplorationMetrics:
    """Snapshot of the monitor at a point in time."""
    steps: int = 0
    new_states: int = 0
    duplicates: int = 0
    no_change: int = 0
    failed: int = 0
    external: int = 0
    limit_hits: int = 0

    native_backs: int = 0
    reload_backs: int = 0
    failed_returns: int = 0

    avg_step_ms: float = 0.0
    avg_click_ms: float = 0.0
    p95_step_ms: float = 0.0
    elapsed_sec: float = 0.0
    stop_reason: str = ""

    def to_dict(self) -> Dict:
        return dict(self.__dict__)


class ExplorationMonitor:
    """
    Usage::

        monitor = ExplorationMonitor()
        monitor.start()
        monitor.record_step(StepTiming(node_id=..., status="new", total_ms=...))
        monitor.record_return(native=True)
        print(monitor.format_summary(monitor.snapshot()))
    """

    def __init__(self, keep_last: int = 1000):
        self._start_time = 0.0
        self._status_counts: Counter = Counter()
        self._returns: Counter = Counter()
        self._timings: Deque[StepTiming] = deque(maxlen=keep_last)
        self._stop_reason = ""

    def start(self) -> None:
        self._start_time = time.monotonic()

    def stop(self, reason: str = "completed") -> None:
        self._stop_reason = reason

    @property
    def steps(self) -> int:
        return sum(self._status_counts.values())

    def record_step(self, timing: StepTiming) -> None:
        if timing.status not in STEP_STATUSES:
            raise ValueError(f"Unknown step status: {timing.status}")
        self._status_counts[timing.status] += 1
        self._timings.append(timing)
        logger.debug(
            f"[MONITOR] {timing.status:<9} {timing.href} "
            f"click={timing.click_ms:.0f}ms total={timing.total_ms:.0f}ms"
        )

    def record_return(self, native: bool, ok: bool = True) -> None:
        if not ok:
            self._returns["failed"] += 1
        elif native:
            self._returns["native"] += 1
        else:
            self._returns["reload"] += 1

    def snapshot(self) -> ExplorationMetrics:
        elapsed = time.monotonic() - self._start_time if self._start_time else 0.0
        totals = [t.total_ms for t in self._timings if t.total_ms > 0]
        clicks = [t.click_ms for t in self._timings if t.click_ms > 0]

        p95 = 0.0
        if totals:
            ordered = sorted(totals)
            p95 = ordered[min(int(len(ordered) * 0.95), len(ordered) - 1)]

        c = self._status_counts
        return ExplorationMetrics(
            steps=self.steps,
            new_states=c["new"],
            duplicates=c["duplicate"],
            no_change=c["no_change"],
            failed=c["failed"],
            external=c["external"],
            limit_hits=c["limit"],
            native_backs=self._returns["native"],
            reload_backs=self._returns["reload"],
            failed_returns=self._returns["failed"],
            avg_step_ms=round(sum(totals) / len(totals), 1) if totals else 0.0,
            avg_click_ms=round(sum(clicks) / len(clicks), 1) if clicks else 0.0,
            p95_step_ms=round(p95, 1),
            elapsed_sec=round(elapsed, 2),
            stop_reason=self._stop_reason,
        )

    def format_summary(self, metrics: ExplorationMetrics) -> str:
        lines = [
            "=" * 65,
            "  EXPLORATION SUMMARY",
            "=" * 65,
            f"  Links followed:      {metrics.steps}",
            f"  New states:          {metrics.new_states}",
            f"  Duplicates:          {metrics.duplicates}",
            f"  No change:           {metrics.no_change}",
            f"  Failed:              {metrics.failed}",
            f"  Left the site:       {metrics.external}",
            "-" * 65,
            f"  Back (history):      {metrics.native_backs}",
            f"  Back (reload):       {metrics.reload_backs}",
            f"  Back (failed):       {metrics.failed_returns}",
            "-" * 65,
            f"  Avg step time:       {metrics.avg_step_ms:.0f} ms",
            f"  P95 step time:       {metrics.p95_step_ms:.0f} ms",
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
            "=" * 65,
        ]
        return "\n".join(lines)
