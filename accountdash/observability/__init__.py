"""
Observability module - Logging, Metrics, and Tracing.
"""

from accountdash.observability.logging import setup_logging
from accountdash.observability.metrics import metrics
from accountdash.observability.tracing import instrument_fastapi, setup_tracing, trace_operation

__all__ = [
    "setup_logging",
    "metrics",
    "instrument_fastapi",
    "setup_tracing",
    "trace_operation",
]
