"""
Tests for formatting, sanitizing, logging and metrics helpers.
"""

import sys
import json
import logging
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from utils import (
    SecureLogger,
    gwei_to_wei,
    wei_to_gwei,
    to_base_units,
    from_base_units,
    format_gwei,
    format_amount,
    format_duration,
    format_address,
    format_tx_hash,
    validate_private_key,
    validate_address,
    sanitize_error_message,
    mask_sensitive,
    register_secret,
)
from logging_utils import MetricsCollector, PerformanceMetrics


class TestUnits:

    def test_gwei_conversion(self):
        assert gwei_to_wei(2) == 2 * 10 ** 9
        assert gwei_to_wei(1.5) == 1_500_000_000
        assert wei_to_gwei(2_500_000_000) == Decimal("2.5")

    def test_base_units(self):
        assert to_base_units(Decimal("1.25")) == 125 * 10 ** 16
        assert from_base_units(10 ** 18) == Decimal(1)


class TestFormatting:

    def test_format_gwei(self):
        assert format_gwei(0) == "0 Gwei"
        assert format_gwei(2 * 10 ** 9) == "2.00 Gwei"
        assert format_gwei(5 * 10 ** 8) == "0.5000 Gwei"

    def test_format_amount(self):
        assert format_amount(Decimal("1.5"), "PLUME") == "1.5000 PLUME"
        assert format_amount(0.0005, "PLUME") == "0.000500 PLUME"
        assert format_amount(2500, "PLUME") == "2,500.00 PLUME"

    def test_format_duration(self):
        assert format_duration(30) == "30s"
        assert format_duration(90) == "1m 30s"
        assert format_duration(300) == "5m"
        assert format_duration(3665) == "1h 1m"

    def test_format_address_and_hash(self):
        assert format_address("0x1234567890123456789012345678901234567890", 4) == "0x12...7890"
        assert format_tx_hash("0x" + "ab" * 32, 6) == "0xabab...ababab"


class TestValidation:

    def test_validate_private_key(self):
        assert validate_private_key("0x" + "a" * 64)
        assert validate_private_key("b" * 64)
        assert not validate_private_key("0x" + "a" * 63)
        assert not validate_private_key("")
        assert not validate_private_key(None)
        assert not validate_private_key("zz" * 32)

    def test_validate_address(self):
        assert validate_address("0xea237441c92cae6fc17caaf9a7acb3f953be4bd1")
        assert not validate_address("0x123")
        assert not validate_address(None)


class TestSanitizing:

    def test_sanitize_error_message(self):
        key = "0x" + "c" * 64
        register_secret(key)
        message = f"request to https://rpc.example/v1/SECRET failed with key {key}"
        sanitized = sanitize_error_message(message)

        assert "SECRET" not in sanitized
        assert key not in sanitized
        assert "[URL]" in sanitized

    def test_sanitize_accepts_exceptions(self):
        assert sanitize_error_message(ValueError("boom")) == "boom"

    def test_transaction_hash_is_not_redacted(self):
        register_secret("0x" + "c" * 64)
        tx_hash = "0x" + "ab" * 32
        message = f"Transaction HexBytes('{tx_hash}') is not in the chain after 180 seconds"

        assert sanitize_error_message(message) == message

    def test_key_without_prefix_is_redacted(self):
        register_secret("0x" + "F1" * 32)
        assert sanitize_error_message("key " + "f1" * 32) == "key [PRIVATE_KEY]"

    def test_mask_sensitive(self):
        assert mask_sensitive("abcdefghijkl") == "abcd***ijkl"
        assert mask_sensitive("short") == "*****"

    def test_secure_logger_redacts_keys(self, caplog):
        base = logging.getLogger("wrap_bot.test")
        secure = SecureLogger(base)
        key = "0x" + "e" * 64
        register_secret(key)

        with caplog.at_level(logging.INFO, logger="wrap_bot.test"):
            secure.info(f"loaded key {key}")

        assert key not in caplog.text
        assert "[PRIVATE_KEY_REDACTED]" in caplog.text

    def test_secure_logger_keeps_transaction_hash(self, caplog):
        secure = SecureLogger(logging.getLogger("wrap_bot.test"))
        register_secret("0x" + "e" * 64)
        tx_hash = "0x" + "ab" * 32

        with caplog.at_level(logging.INFO, logger="wrap_bot.test"):
            secure.info(f"Transaction sent (wrap 1 PLUME): {tx_hash}")

        assert tx_hash in caplog.text
        assert "REDACTED" not in caplog.text


class TestMetrics:

    def _metric(self, operation, success, duration_ms=10.0):
        metric = PerformanceMetrics(operation=operation, start_time=0.0)
        metric.success = success
        metric.duration_ms = duration_ms
        return metric

    def test_summary(self):
        collector = MetricsCollector()
        collector.add_metric(self._metric("wrap", True, 10))
        collector.add_metric(self._metric("wrap", False, 30))
        collector.add_metric(self._metric("unwrap", True, 20))

        summary = collector.get_summary()
        assert summary["total_operations"] == 3
        assert summary["operations"]["wrap"]["success_rate"] == 50.0
        assert summary["operations"]["wrap"]["max_duration_ms"] == 30
        assert summary["operations"]["unwrap"]["failure"] == 0
        assert summary["overall_success_rate"] == round(2 / 3 * 100, 2)
        assert summary["avg_duration_ms"] == 20.0

    def test_empty_summary(self):
        summary = MetricsCollector().get_summary()
        assert summary["total_operations"] == 0
        assert summary["operations"] == {}

    def test_finalize_sets_duration(self):
        metric = PerformanceMetrics(operation="wrap", start_time=0.0)
        metric.finalize(success=False, error="reverted")

        assert metric.duration_ms > 0
        assert metric.to_dict()["error"] == "reverted"

    def test_save_to_file(self, tmp_path):
        collector = MetricsCollector()
        collector.add_metric(self._metric("wrap", True))
        path = tmp_path / "out" / "metrics.json"
        collector.save_to_file(str(path))

        data = json.loads(path.read_text())
        assert data["summary"]["total_operations"] == 1
        assert data["metrics"][0]["operation"] == "wrap"

    def test_history_is_bounded(self):
        collector = MetricsCollector(max_history=5)
        for _ in range(8):
            collector.add_metric(self._metric("wrap", True))

        assert len(collector.metrics) == 5
        assert collector.get_summary()["total_operations"] == 8
