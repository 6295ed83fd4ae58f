"""
Test run metrics.

Verifies:
- Counters accumulate, gauges keep the latest value
- timed() records on success and on failure
- snapshot() is a sorted, detached copy
"""

from __future__ import annotations

import pytest

from provenance.eth.metrics import Metrics


def test_counters_and_gauges():
    m = Metrics()
    m.inc("rpc_errors_total")
    m.inc("rpc_errors_total", by=2)
    m.observe("trace_entries", 3)
    m.observe("trace_entries", 5)
    assert m.counters == {"rpc_errors_total": 3}
    assert m.gauges == {"trace_entries": 5.0}


def test_timed_records_when_block_raises():
    m = Metrics()
    with pytest.raises(ValueError):
        with m.timed("build_ms"):
            raise ValueError("boom")
    assert m.gauges["build_ms"] >= 0.0


def test_snapshot_is_sorted_and_detached():
    m = Metrics()
    m.observe("trace_fetch_ms", 1.23456)
    m.observe("build_ms", 2.0)
    snap = m.snapshot()
    assert list(snap["gauges"]) == ["build_ms", "trace_fetch_ms"]
    assert snap["gauges"]["trace_fetch_ms"] == 1.235

    m.inc("build_errors_total")
    assert snap["counters"] == {}
