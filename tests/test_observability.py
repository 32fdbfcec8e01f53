"""
Tests for observability — metrics recorder + logging setup.
"""

import logging
from pathlib import Path

import pytest

from multistage.core.observability.logging_config import resolve_level, setup_logging
from multistage.core.observability.metrics import (
    EventCounter,
    MetricsEvent,
    MetricsRegistry,
    record_event,
)

# ── Metrics Tests ────────────────────────────────────────────────────


class TestEventCounter:
    def test_total_and_series(self):
        c = EventCounter("pod_generated")
        c.add({"step": "e2e-a"})
        c.add({"step": "e2e-a"})
        c.add({"step": "e2e-b"})
        assert c.total == 3
        assert c.count() == 3
        assert c.count(step="e2e-a") == 2
        assert c.count(step="missing") == 0

    def test_label_order_irrelevant(self):
        c = EventCounter("x")
        c.add({"a": "1", "b": "2"})
        assert c.count(b="2", a="1") == 1

    def test_to_dict(self):
        c = EventCounter("step_failed")
        c.add({"step": "e2e-a"})
        assert c.to_dict() == {
            "name": "step_failed",
            "total": 1,
            "series": [{"labels": {"step": "e2e-a"}, "value": 1}],
        }


class TestMetricsRegistry:
    def test_record_counts(self):
        registry = MetricsRegistry()
        registry.record(MetricsEvent("pod_generated", {"step": "e2e-a"}))
        registry.record(MetricsEvent("pod_generated", {"step": "e2e-b"}))
        registry.record(MetricsEvent("step_failed", {"step": "e2e-c"}))
        assert registry.counter("pod_generated").total == 2
        assert [c.name for c in registry.counters()] == ["pod_generated", "step_failed"]

    def test_record_timestamps(self):
        registry = MetricsRegistry()
        event = MetricsEvent("step_skipped")
        registry.record(event)
        assert event.timestamp
        assert registry.events == [event]

    def test_timer(self):
        registry = MetricsRegistry()
        with registry.timer("compile_ms"):
            pass
        data = registry.timing("compile_ms").to_dict()
        assert data["count"] == 1
        assert data["total_ms"] >= 0

    def test_timer_records_on_error(self):
        registry = MetricsRegistry()
        with pytest.raises(ValueError):
            with registry.timer("compile_ms"):
                raise ValueError("boom")
        assert len(registry.timing("compile_ms").samples) == 1

    def test_empty_timing(self):
        registry = MetricsRegistry()
        assert registry.timing("compile_ms").to_dict()["mean_ms"] == 0.0

    def test_to_dict_and_reset(self):
        registry = MetricsRegistry()
        registry.record(MetricsEvent("pod_generated"))
        data = registry.to_dict()
        assert len(data["counters"]) == 1
        assert data["events"][0]["name"] == "pod_generated"
        registry.reset()
        assert registry.to_dict() == {"counters": [], "timings": [], "events": []}


class TestRecordEvent:
    def test_no_recorder(self):
        record_event(None, MetricsEvent("pod_generated"))

    def test_failing_recorder_swallowed(self):
        class Broken:
            def record(self, event):
                raise RuntimeError("down")

        record_event(Broken(), MetricsEvent("pod_generated"))


# ── Logging Tests ────────────────────────────────────────────────────


class TestResolveLevel:
    def test_flags_win(self):
        env = {"MULTISTAGE_LOG_LEVEL": "INFO"}
        assert resolve_level(debug=True, environ=env) == "DEBUG"
        assert resolve_level(verbose=True, environ=env) == "INFO"
        assert resolve_level(quiet=True, environ=env) == "ERROR"

    def test_env(self):
        assert resolve_level(environ={"MULTISTAGE_LOG_LEVEL": "DEBUG"}) == "DEBUG"

    def test_default(self):
        assert resolve_level(environ={}) == "WARNING"


class TestSetupLogging:
    def test_console_level(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_unknown_level_is_warning(self):
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.WARNING

    def test_log_file(self, tmp_path: Path):
        log_file = tmp_path / "multistage.log"
        setup_logging("ERROR", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        logging.getLogger("multistage.test").debug("hello file")
        for handler in root.handlers:
            handler.flush()
        assert "hello file" in log_file.read_text()
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler):
                root.removeHandler(handler)
                handler.close()
