"""
Tests for threshold and baseline anomaly detection.
"""
import pytest

from inventory_ops.errors import PersistenceError
from inventory_ops.monitoring.anomaly_detector import (
    AnomalyDetector,
    deviation_ratio,
    severity_for_ratio,
)
from inventory_ops.storage.models import AnomalyType, Severity


class TestSeverityScale:

    @pytest.mark.parametrize("ratio, expected", [
        (0.5, None),
        (1.0, None),
        (1.2, Severity.LOW),
        (1.5, Severity.MEDIUM),
        (2.0, Severity.HIGH),
        (2.9, Severity.HIGH),
        (3.0, Severity.CRITICAL),
    ])
    def test_ratio_bands(self, ratio, expected):
        assert severity_for_ratio(ratio) == expected

    def test_zero_threshold_tolerates_nothing(self):
        assert deviation_ratio(0, 0) == 0.0
        assert severity_for_ratio(deviation_ratio(1, 0)) == Severity.HIGH
        assert severity_for_ratio(deviation_ratio(3, 0)) == Severity.CRITICAL


class TestThresholdChecks:
    """Configured limits per category."""

    def test_error_rate_over_threshold(self, thresholds):
        detector = AnomalyDetector(thresholds)

        [anomaly] = detector.evaluate({"performance": {"error_rate": 0.12, "response_time": 300}})

        assert anomaly.type == AnomalyType.PERFORMANCE
        assert anomaly.severity == Severity.HIGH
        assert anomaly.metrics["ratio"] == pytest.approx(2.4)
        assert anomaly.detected_by == "anomaly-detector"

    def test_any_discrepancy_is_anomalous_by_default(self, thresholds):
        detector = AnomalyDetector(thresholds)

        [anomaly] = detector.evaluate({"inventory": {"discrepancies": 3}})

        assert anomaly.type == AnomalyType.INVENTORY
        assert anomaly.severity == Severity.CRITICAL

    def test_missing_domain_and_non_numeric_skipped(self, thresholds):
        detector = AnomalyDetector(thresholds)

        anomalies = detector.evaluate({
            "performance": None,
            "security": {"failed_logins": "many"},
        })

        assert anomalies == []

    def test_within_limits_is_quiet(self, thresholds):
        detector = AnomalyDetector(thresholds)

        assert detector.evaluate({
            "performance": {"error_rate": 0.01, "response_time": 500},
            "blockchain": {"block_delay": 12, "pending_transactions": 3},
        }) == []


class TestBaselines:
    """Learned per-metric baselines."""

    def test_no_baseline_flag_before_min_samples(self, thresholds):
        detector = AnomalyDetector(thresholds, min_samples=20)

        for i in range(19):
            detector.evaluate({"performance": {"requests_per_minute": 100 + (i % 2) * 2}})

        assert detector.evaluate({"performance": {"requests_per_minute": 500}}) == []

    def test_outlier_against_baseline(self, thresholds):
        detector = AnomalyDetector(thresholds, min_samples=20)

        for i in range(20):
            detector.evaluate({"performance": {"requests_per_minute": 100 + (i % 2) * 2}})

        [anomaly] = detector.evaluate({"performance": {"requests_per_minute": 110}})

        assert anomaly.severity == Severity.CRITICAL
        assert anomaly.metrics["zscore"] == pytest.approx(9.0)

    def test_threshold_flag_not_duplicated_by_baseline(self, thresholds):
        detector = AnomalyDetector(thresholds, min_samples=20)

        for i in range(20):
            detector.evaluate({"performance": {"error_rate": 0.01 + (i % 2) * 0.001}})

        anomalies = detector.evaluate({"performance": {"error_rate": 0.2}})

        assert len(anomalies) == 1
        assert "exceeds threshold" in anomalies[0].description


class TestHandling:
    """Anomalies are persisted and alerted, never healed."""

    @pytest.mark.asyncio
    async def test_high_alerted_and_persisted(self, thresholds, mock_store, mock_alerts):
        detector = AnomalyDetector(thresholds, mock_store, mock_alerts)

        await detector.detect({"performance": {"error_rate": 0.12}})

        mock_alerts.send_warning.assert_called_once()
        assert mock_alerts.send_warning.call_args[1]["dedup_key"] == "anomaly_performance_error_rate"
        mock_store.save_anomaly.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_low_persisted_not_alerted(self, thresholds, mock_store, mock_alerts):
        detector = AnomalyDetector(thresholds, mock_store, mock_alerts)

        [anomaly] = await detector.detect({"performance": {"response_time": 2500}})

        assert anomaly.severity == Severity.LOW
        mock_alerts.send_warning.assert_not_called()
        mock_alerts.send_critical.assert_not_called()
        mock_store.save_anomaly.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_store_outage_does_not_lose_detection(self, thresholds, mock_store, mock_alerts):
        mock_store.save_anomaly.side_effect = PersistenceError("save_anomaly")
        detector = AnomalyDetector(thresholds, mock_store, mock_alerts)

        anomalies = await detector.detect({"blockchain": {"block_delay": 1200}})

        assert anomalies[0].severity == Severity.CRITICAL
        mock_alerts.send_critical.assert_called_once()
