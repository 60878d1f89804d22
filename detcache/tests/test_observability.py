"""
Unit Tests: Logging and Metrics
"""

import io
import json
import logging

import pytest

from detcache.observability.logging import (
    JsonFormatter,
    LogLevel,
    StructuredLogger,
    setup_logging,
)
from detcache.observability.metrics import Counter, Histogram, MetricsCollector


class TestVerbosity:
    """Counted -v/-q flags map to levels."""

    @pytest.mark.parametrize("verbose,quiet,level", [
        (0, 3, LogLevel.OFF),
        (0, 2, LogLevel.OFF),
        (0, 1, LogLevel.ERROR),
        (0, 0, LogLevel.WARNING),
        (1, 0, LogLevel.INFO),
        (2, 0, LogLevel.DEBUG),
        (5, 0, LogLevel.DEBUG),
        (2, 1, LogLevel.INFO),
    ])
    def test_from_verbosity(self, verbose, quiet, level):
        assert LogLevel.from_verbosity(verbose, quiet) is level


class TestLogging:
    """Tests for formatter and setup."""

    def test_json_formatter_includes_extras_and_context(self):
        record = logging.LogRecord(
            "detcache.router", logging.WARNING, __file__, 1, "Error from cache %s", ("s3",), None,
        )
        record.backend = "s3"

        with StructuredLogger.context(key="abc"):
            data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["message"] == "Error from cache s3"
        assert data["logger"] == "detcache.router"
        assert data["backend"] == "s3"
        assert data["key"] == "abc"
        assert "@timestamp" in data

    def test_text_output_carries_context(self):
        stream = io.StringIO()
        setup_logging(LogLevel.INFO, stream=stream)

        with StructuredLogger.context(key="abc"):
            StructuredLogger("detcache.test").info("Stored value")

        line = stream.getvalue()
        assert "INFO" in line
        assert "Stored value" in line
        assert "key=abc" in line

    def test_json_output(self):
        stream = io.StringIO()
        setup_logging(LogLevel.DEBUG, json_output=True, stream=stream)

        StructuredLogger("detcache.test").with_extra(component="cli").debug("hello", size=3)

        data = json.loads(stream.getvalue().splitlines()[-1])
        assert data["component"] == "cli"
        assert data["size"] == 3

    def test_off_silences_everything(self):
        stream = io.StringIO()
        setup_logging(LogLevel.OFF, stream=stream)

        logging.getLogger("detcache.test").critical("nope")

        assert stream.getvalue() == ""

    def test_context_is_restored(self):
        stream = io.StringIO()
        setup_logging(LogLevel.INFO, json_output=True, stream=stream)
        logger = StructuredLogger("detcache.test")

        with logger.context(key="abc"):
            pass
        logger.info("after")

        assert "key" not in json.loads(stream.getvalue())


class TestMetrics:
    """Tests for counters, histograms and export."""

    def test_counter_labels(self):
        counter = Counter("ops", ["backend"])
        counter.inc(backend="a")
        counter.inc(2, backend="a")
        counter.inc(backend="b")
        assert counter.get(backend="a") == 3
        assert counter.get(backend="c") == 0

    def test_histogram_cumulative_buckets(self):
        histogram = Histogram("latency", ["op"], buckets=[0.1, 1.0])
        histogram.observe(0.05, op="get")
        histogram.observe(0.5, op="get")

        data = next(histogram.collect())
        assert data["buckets"] == [(0.1, 1), (1.0, 2), (float("inf"), 2)]
        assert data["count"] == 2

    def test_histogram_timer(self):
        histogram = Histogram("latency", ["op"])
        with histogram.time(op="put"):
            pass
        assert histogram.count(op="put") == 1

    def test_collector_reuses_metrics(self):
        collector = MetricsCollector()
        assert collector.counter("x") is collector.counter("x")

    def test_export_histogram(self):
        collector = MetricsCollector()
        collector.histogram("lat", ["op"], "Latency", buckets=[1.0]).observe(0.5, op="get")

        text = collector.export_prometheus()

        assert "# HELP lat Latency" in text
        assert 'lat_bucket{le="1.0",op="get"} 1' in text
        assert 'lat_bucket{le="+Inf",op="get"} 1' in text
        assert 'lat_count{op="get"} 1' in text
