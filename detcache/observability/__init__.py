"""
Observability module: Metrics and structured logging.
"""

from detcache.observability.metrics import MetricsCollector, Counter, Histogram
from detcache.observability.logging import StructuredLogger, LogLevel, setup_logging

__all__ = [
    "MetricsCollector",
    "Counter",
    "Histogram",
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
]
