"""
Run metrics for a single verification.

Stage latencies, sizes and error counts only. Nothing about the code being
verified is recorded. Reported with --verbose and in --json output.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator

# Gauge precision in the reported snapshot
SNAPSHOT_DIGITS = 3


@dataclass
class Metrics:
    """Error counters and stage gauges for one run."""

    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, float] = field(default_factory=dict)

    def inc(self, name: str, by: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + by

    def observe(self, name: str, value: float) -> None:
        """Record a gauge; a later observation replaces the earlier one."""
        self.gauges[name] = float(value)

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """
        Record the block's wall time as gauge `name`, in milliseconds.

        The gauge is written even when the block raises, so a failed stage
        still reports how long it took to fail.
        """
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - t0) * 1000.0)

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Sorted, JSON-ready copy of the current values."""
        return {
            "counters": dict(sorted(self.counters.items())),
            "gauges": {k: round(v, SNAPSHOT_DIGITS) for k, v in sorted(self.gauges.items())},
        }
