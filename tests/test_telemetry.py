"""Telemetry 测试"""

import logging
from unittest.mock import patch

from enginegate.telemetry import Metrics, get_logger, setup_logging, truncate


class TestMetrics:
    def test_counter_with_labels(self):
        m = Metrics()
        m.inc("bootstrap.step_fail", {"step": "spawn"})
        m.inc("bootstrap.step_fail", {"step": "spawn"})
        m.inc("bootstrap.step_fail", {"step": "resolve"})

        assert m.get_counter("bootstrap.step_fail", {"step": "spawn"}) == 2
        assert m.get_counter("bootstrap.step_fail", {"step": "resolve"}) == 1
        assert m.get_counter("bootstrap.step_fail") == 0

    def test_gauge_and_reset(self):
        m = Metrics()
        m.gauge("registry.observers", 3)
        m.inc("registry.requests")

        assert m.get_gauge("registry.observers") == 3
        assert m.get_all_counters() == {"registry.requests": 1}

        m.reset()

        assert m.get_all_counters() == {}
        assert m.get_all_gauges() == {}


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("SELECT 1", 20) == "SELECT 1"

    def test_whitespace_collapsed(self):
        assert truncate("SELECT\n    1\n", 20) == "SELECT 1"

    def test_long_text(self):
        result = truncate("SELECT " + "x, " * 100, 20)

        assert len(result) == 20
        assert result.endswith("...")


class TestLogging:
    def test_get_logger(self):
        assert get_logger("enginegate.engine").name == "enginegate.engine"

    def test_setup_logging_unknown_level_falls_back(self):
        with patch("logging.basicConfig") as basic_config:
            setup_logging("nonsense")
            setup_logging("debug")

        assert basic_config.call_args_list[0].kwargs["level"] == logging.INFO
        assert basic_config.call_args_list[1].kwargs["level"] == logging.DEBUG
