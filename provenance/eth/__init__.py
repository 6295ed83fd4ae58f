"""
Chain-facing layer: run configuration, trace retrieval, run metrics.
"""

from provenance.eth.metrics import Metrics
from provenance.eth.settings import Settings
from provenance.eth.trace_source import JsonTraceSource, TraceSource, Web3TraceSource

__all__ = [
    "JsonTraceSource",
    "Metrics",
    "Settings",
    "TraceSource",
    "Web3TraceSource",
]
