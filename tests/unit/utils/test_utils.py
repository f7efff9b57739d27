"""
Utility function tests
"""

import datetime
import logging
import threading
import pytest

from fleet_watcher.utils import format_age, parse_memory, parse_timestamp
from fleet_watcher.utils.fs import dump_data
from fleet_watcher.utils import logger as logger_module
from fleet_watcher.utils.logger import BASE_LOGGER, get_logger, init_logger
from fleet_watcher.utils.timer import CancellableTimer


NOW = datetime.datetime(2025, 1, 10, 12, 0, 0, tzinfo=datetime.timezone.utc)


class TestFormatAge:
    """Test kubectl style ages"""

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (datetime.timedelta(seconds=30), "0m"),
            (datetime.timedelta(minutes=42), "42m"),
            (datetime.timedelta(hours=5, minutes=59), "5h"),
            (datetime.timedelta(days=3, hours=2), "3d"),
        ],
    )
    def test_format_age(self, delta, expected):
        assert format_age(NOW - delta, NOW) == expected

    def test_unknown_creation_time(self):
        assert format_age(None, NOW) == ""


class TestParseTimestamp:
    """Test Kubernetes timestamp parsing"""

    def test_zulu_timestamp(self):
        parsed = parse_timestamp("2025-01-10T12:00:00Z")
        assert parsed == NOW
        assert parsed.tzinfo is not None

    def test_naive_datetime_is_utc(self):
        assert parse_timestamp(datetime.datetime(2025, 1, 10, 12, 0, 0)) == NOW

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_invalid_values(self, value):
        assert parse_timestamp(value) is None


class TestParseMemory:
    """Test Kubernetes quantity parsing"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("128Mi", 128 * 1024 ** 2),
            ("4Gi", 4 * 1024 ** 3),
            ("512M", 512_000_000),
            ("2k", 2000),
            ("1024", 1024),
            (None, 0),
        ],
    )
    def test_parse_memory(self, value, expected):
        assert parse_memory(value) == expected

    @pytest.mark.parametrize("value", ["lots", "12Xi"])
    def test_parse_memory_invalid(self, value):
        with pytest.raises(ValueError):
            parse_memory(value)


class TestCancellableTimer:
    """Test waits that end on cancellation"""

    def test_wait_returns_false_after_timeout(self):
        timer = CancellableTimer()
        assert timer.wait(0.01) is False
        assert not timer.cancelled()

    def test_cancel_wakes_waiter(self):
        stop = threading.Event()
        timer = CancellableTimer(stop)
        result = []
        t = threading.Thread(target=lambda: result.append(timer.wait(30)))
        t.start()
        timer.cancel()
        t.join(timeout=5)
        assert result == [True]
        assert stop.is_set()


class TestFsHelpers:
    """Test output helpers"""

    def test_dump_data(self):
        assert dump_data({"a": 1}, "json") == '{\n    "a": 1\n}'
        assert dump_data({"a": 1}, "yaml") == "a: 1\n"
        with pytest.raises(ValueError):
            dump_data({"a": 1}, "xml")



class TestLogger:
    """Test logger naming and handler setup"""

    @pytest.fixture
    def fresh_parent(self, monkeypatch):
        parent = logging.getLogger(BASE_LOGGER)
        saved = list(parent.handlers)
        root_level = logging.getLogger().level
        for handler in saved:
            parent.removeHandler(handler)
        monkeypatch.setattr(logger_module, "_LOGGER_INITIALIZED", False)
        yield parent
        for handler in list(parent.handlers):
            handler.close()
            parent.removeHandler(handler)
        for handler in saved:
            parent.addHandler(handler)
        logging.getLogger().setLevel(root_level)

    def test_get_logger_nests_under_base(self):
        assert get_logger("fleet_watcher.store").name == "fleet-watcher.fleet_watcher.store"
        assert get_logger("fleet-watcher.cli").name == "fleet-watcher.cli"
        assert get_logger("").name == BASE_LOGGER

    def test_init_logger_writes_log_file(self, fresh_parent, tmp_path):
        """Test child records reach the file handler and stay off the root logger"""
        init_logger(str(tmp_path), verbose=True)
        init_logger(str(tmp_path), verbose=True)

        assert fresh_parent.propagate is False
        assert len(fresh_parent.handlers) == 2

        get_logger("fleet_watcher.test").debug("hello from a child")
        for handler in fresh_parent.handlers:
            handler.flush()
        assert "hello from a child" in (tmp_path / "watcher.log").read_text()
