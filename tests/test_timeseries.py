"""Tests for time-series bucketing, merging, rates and metrics."""

import math
from datetime import datetime, timezone

import pytest

from app.timeseries import (
    STATUS_CRITICAL, STATUS_NORMAL, STATUS_WARNING,
    Carry, abs_pct_error, bucket_key, bucketize, category_rates,
    classify_status, counter_delta, jitter_proxy, loss_proxy, mape,
    mean_or_zero, merge_series, neighbor_keys, predicted_map, resolve_prediction,
    rmse, sample_interval, series_rates,
)


# ── Bucketizer ──


class TestBucketKey:
    def test_floors_to_bucket_start(self):
        assert bucket_key("2026-01-15T12:00:07Z", 5) == "2026-01-15T12:00:05Z"

    def test_exact_boundary_starts_new_bucket(self):
        assert bucket_key("2026-01-15T12:00:10Z", 5) == "2026-01-15T12:00:10Z"

    @pytest.mark.parametrize("width", [1, 2, 5, 7, 10, 15, 30, 60])
    def test_same_window_same_key(self, width):
        for n in range(0, 60, width):
            start = bucket_key(f"2026-01-15T12:34:{n:02d}Z", width)
            last = min(n + width - 1, 59)
            assert bucket_key(f"2026-01-15T12:34:{last:02d}Z", width) == start

    def test_adjacent_windows_differ(self):
        assert bucket_key("2026-01-15T12:00:09Z", 10) != bucket_key("2026-01-15T12:00:10Z", 10)

    def test_never_spans_minute(self):
        # 7s buckets: :56 starts a short bucket that ends at the minute
        assert bucket_key("2026-01-15T12:00:59Z", 7) == "2026-01-15T12:00:56Z"
        assert bucket_key("2026-01-15T12:01:00Z", 7) == "2026-01-15T12:01:00Z"

    def test_accepts_datetime_and_fractional(self):
        dt = datetime(2026, 1, 15, 12, 0, 13, 500000, tzinfo=timezone.utc)
        assert bucket_key(dt, 5) == "2026-01-15T12:00:10Z"
        assert bucket_key("2026-01-15T12:00:13.900Z", 5) == "2026-01-15T12:00:10Z"

    def test_naive_datetime_treated_as_utc(self):
        assert bucket_key(datetime(2026, 1, 15, 12, 0, 3), 5) == "2026-01-15T12:00:00Z"

    def test_invalid_width(self):
        with pytest.raises(ValueError):
            bucket_key("2026-01-15T12:00:00Z", 0)


class TestNeighborKeys:
    def test_nearest_first(self):
        keys = neighbor_keys("2026-01-15T12:00:10Z", 5)
        assert keys == [
            "2026-01-15T12:00:05Z",
            "2026-01-15T12:00:15Z",
            "2026-01-15T12:00:00Z",
            "2026-01-15T12:00:20Z",
        ]

    def test_crosses_minute(self):
        keys = neighbor_keys("2026-01-15T12:00:55Z", 5)
        assert "2026-01-15T12:01:00Z" in keys
        assert "2026-01-15T12:01:05Z" in keys


# ── Series Merger ──


def _points(*keys):
    return [{"key": k, "actual_mbps": 1.0} for k in keys]


class TestResolvePrediction:
    def test_exact_match_wins_over_neighbor(self):
        predicted = {"2026-01-15T12:00:10Z": 7.0, "2026-01-15T12:00:05Z": 3.0}
        assert resolve_prediction("2026-01-15T12:00:10Z", predicted, 5) == ("2026-01-15T12:00:10Z", 7.0)

    def test_earlier_neighbor_before_later(self):
        predicted = {"2026-01-15T12:00:05Z": 3.0, "2026-01-15T12:00:15Z": 9.0}
        assert resolve_prediction("2026-01-15T12:00:10Z", predicted, 5) == ("2026-01-15T12:00:05Z", 3.0)

    def test_one_width_before_two(self):
        predicted = {"2026-01-15T12:00:00Z": 3.0, "2026-01-15T12:00:15Z": 9.0}
        assert resolve_prediction("2026-01-15T12:00:10Z", predicted, 5) == ("2026-01-15T12:00:15Z", 9.0)

    def test_beyond_two_widths_not_found(self):
        predicted = {"2026-01-15T12:00:25Z": 3.0}
        assert resolve_prediction("2026-01-15T12:00:10Z", predicted, 5) == (None, None)


class TestMergeSeries:
    def test_preserves_order_and_fields(self):
        actual = _points("2026-01-15T12:00:00Z", "2026-01-15T12:00:05Z")
        records, _ = merge_series(actual, {}, 5)
        assert [r["key"] for r in records] == [a["key"] for a in actual]
        assert all(r["actual_mbps"] == 1.0 for r in records)

    def test_forward_fill_from_previous_bucket(self):
        actual = _points("2026-01-15T12:00:00Z", "2026-01-15T12:01:00Z")
        records, carry = merge_series(actual, {"2026-01-15T12:00:00Z": 4.2}, 5)
        assert records[0]["predicted"] == 4.2
        assert records[1]["predicted"] == 4.2
        assert records[1]["predicted_key"] == "2026-01-15T12:00:00Z"
        assert carry == Carry("2026-01-15T12:00:00Z", 4.2)

    def test_no_history_is_none_not_zero(self):
        records, carry = merge_series(_points("2026-01-15T12:00:00Z"), {}, 5)
        assert records[0]["predicted"] is None
        assert records[0]["predicted_key"] is None
        assert carry is None

    def test_zero_prediction_does_not_overwrite_carry(self):
        actual = _points("2026-01-15T12:00:00Z", "2026-01-15T12:01:00Z", "2026-01-15T12:02:00Z")
        predicted = {"2026-01-15T12:00:00Z": 5.0, "2026-01-15T12:01:00Z": 0.0}
        records, carry = merge_series(actual, predicted, 5)
        assert [r["predicted"] for r in records] == [5.0, 5.0, 5.0]
        assert carry.value == 5.0

    def test_negative_prediction_falls_back_to_carry(self):
        actual = _points("2026-01-15T12:00:00Z", "2026-01-15T12:01:00Z")
        predicted = {"2026-01-15T12:00:00Z": 5.0, "2026-01-15T12:01:00Z": -1.0}
        records, _ = merge_series(actual, predicted, 5)
        assert records[1]["predicted"] == 5.0

    def test_zero_without_carry_is_reported(self):
        records, carry = merge_series(_points("2026-01-15T12:00:00Z"), {"2026-01-15T12:00:00Z": 0.0}, 5)
        assert records[0]["predicted"] == 0.0
        assert carry is None

    def test_initial_carry_used(self):
        records, _ = merge_series(
            _points("2026-01-15T12:00:00Z"), {}, 5, Carry("2026-01-15T11:59:00Z", 2.5)
        )
        assert records[0]["predicted"] == 2.5
        assert records[0]["predicted_key"] == "2026-01-15T11:59:00Z"

    def test_positive_prediction_replaces_carry(self):
        actual = _points("2026-01-15T12:00:00Z", "2026-01-15T12:01:00Z")
        records, carry = merge_series(
            actual, {"2026-01-15T12:00:00Z": 8.0}, 5, Carry("2026-01-15T11:59:00Z", 2.5)
        )
        assert [r["predicted"] for r in records] == [8.0, 8.0]
        assert carry.value == 8.0

    def test_inputs_not_mutated_and_idempotent(self):
        actual = _points("2026-01-15T12:00:00Z", "2026-01-15T12:00:05Z", "2026-01-15T12:00:40Z")
        predicted = {"2026-01-15T12:00:00Z": 3.0}
        snapshot = [dict(a) for a in actual]
        first = merge_series(actual, predicted, 5)
        second = merge_series(actual, predicted, 5)
        assert first == second
        assert actual == snapshot
        assert predicted == {"2026-01-15T12:00:00Z": 3.0}


class TestPredictedMap:
    def test_scales_and_latest_wins(self):
        forecasts = [
            {"ts_created": "2026-01-15T12:00:01Z", "y_pred": 1000000.0},
            {"ts_created": "2026-01-15T12:00:03Z", "y_pred": 3000000.0},
            {"ts_created": "2026-01-15T12:00:06Z", "y_pred": None},
        ]
        assert predicted_map(forecasts, 5) == {"2026-01-15T12:00:00Z": 3.0}

    def test_custom_divisor(self):
        forecasts = [{"ts_created": "2026-01-15T12:00:00Z", "y_pred": 2000.0}]
        assert predicted_map(forecasts, 5, divisor=1000) == {"2026-01-15T12:00:00Z": 2.0}


# ── Counter Delta Calculator ──


class TestCounterDelta:
    def test_normal_increase(self):
        assert counter_delta(150, 100) == 50

    def test_reset_uses_current_value(self):
        assert counter_delta(100, 150) == 100

    def test_none_treated_as_zero(self):
        assert counter_delta(None, None) == 0
        assert counter_delta(10, None) == 10


class TestSampleInterval:
    def test_actual_gap(self):
        assert sample_interval("2026-01-15T12:00:07Z", "2026-01-15T12:00:00Z", 5) == 7

    def test_no_previous(self):
        assert sample_interval("2026-01-15T12:00:07Z", None, 5) == 5

    def test_non_positive_gap(self):
        assert sample_interval("2026-01-15T12:00:00Z", "2026-01-15T12:00:00Z", 5) == 5
        assert sample_interval("2026-01-15T12:00:00Z", "2026-01-15T12:00:10Z", 5) == 5


class TestProxies:
    def test_jitter_is_absolute_difference(self):
        assert jitter_proxy(20.0, 26.5) == 6.5
        assert jitter_proxy(26.5, 20.0) == 6.5

    def test_jitter_without_previous(self):
        assert jitter_proxy(20.0, None) == 0.0
        assert jitter_proxy(None, 20.0) is None

    def test_loss_from_counters(self):
        assert loss_proxy(200, 100, 190, 100) == pytest.approx(10.0)

    def test_loss_unknown_rx(self):
        assert loss_proxy(200, 100, None, 100) == 0.0

    def test_loss_never_negative(self):
        assert loss_proxy(200, 100, 250, 100) == 0.0

    def test_loss_no_packets_sent(self):
        assert loss_proxy(100, 100, 100, 100) == 0.0


class TestCategoryRates:
    def test_rates_and_jitter(self):
        now = {"voip": {"total_bytes_tx": 6000, "total_pkts_tx": 60, "avg_latency": 26.0, "active_flows": 2}}
        prev = {"voip": {"total_bytes_tx": 1000, "total_pkts_tx": 10, "avg_latency": 20.0}}
        [r] = category_rates(now, prev, "2026-01-15T12:00:05Z", 5)
        assert r["throughput_bps"] == 1000.0
        assert r["pps_tx"] == 10.0
        assert r["avg_latency_ms"] == 26.0
        assert r["avg_jitter_ms"] == 6.0
        assert r["active_flows"] == 2

    def test_missing_now_gives_null_record(self):
        prev = {"video": {"total_bytes_tx": 10, "total_pkts_tx": 1, "avg_latency": 5.0}}
        [r] = category_rates({}, prev, "2026-01-15T12:00:05Z", 5)
        assert r["category"] == "video"
        assert r["timestamp"] == "2026-01-15T12:00:05Z"
        for key in ("throughput_bps", "pps_tx", "avg_latency_ms", "avg_jitter_ms", "active_flows"):
            assert r[key] is None

    def test_missing_prev_counts_from_zero(self):
        now = {"web": {"total_bytes_tx": 500, "total_pkts_tx": 5, "avg_latency": 12.0, "active_flows": 1}}
        [r] = category_rates(now, {}, "2026-01-15T12:00:05Z", 5)
        assert r["throughput_bps"] == 100.0
        assert r["avg_jitter_ms"] == 0.0

    def test_counter_reset(self):
        now = {"web": {"total_bytes_tx": 100, "total_pkts_tx": 10, "avg_latency": 12.0, "active_flows": 1}}
        prev = {"web": {"total_bytes_tx": 150, "total_pkts_tx": 20, "avg_latency": 12.0}}
        [r] = category_rates(now, prev, "2026-01-15T12:00:05Z", 5)
        assert r["throughput_bps"] == 20.0
        assert r["pps_tx"] == 2.0

    def test_order_now_then_prev_only(self):
        now = {
            "a": {"total_bytes_tx": 1, "total_pkts_tx": 1, "avg_latency": 1, "active_flows": 1},
            "b": {"total_bytes_tx": 1, "total_pkts_tx": 1, "avg_latency": 1, "active_flows": 1},
        }
        prev = {"c": {"total_bytes_tx": 1, "total_pkts_tx": 1, "avg_latency": 1}}
        assert [r["category"] for r in category_rates(now, prev, "t", 5)] == ["a", "b", "c"]


class TestSeriesRates:
    def test_mbps_from_byte_counters(self):
        samples = [
            {"timestamp": "2026-01-15T12:00:00Z", "total_bytes_tx": 0, "total_pkts_tx": 0, "avg_latency": 20.0},
            {"timestamp": "2026-01-15T12:00:05Z", "total_bytes_tx": 625000, "total_pkts_tx": 100, "avg_latency": 24.0},
        ]
        [p] = series_rates(samples, 5)
        assert p["timestamp"] == "2026-01-15T12:00:05Z"
        assert p["actual_mbps"] == pytest.approx(1.0)
        assert p["delay_ms"] == 24.0
        assert p["jitter_ms"] == 4.0
        assert p["packet_loss"] == 0.0

    def test_single_sample_yields_nothing(self):
        assert series_rates([{"timestamp": "2026-01-15T12:00:00Z", "total_bytes_tx": 5}], 5) == []

    def test_reset_between_samples(self):
        samples = [
            {"timestamp": "2026-01-15T12:00:00Z", "total_bytes_tx": 900000},
            {"timestamp": "2026-01-15T12:00:05Z", "total_bytes_tx": 625000},
        ]
        [p] = series_rates(samples, 5)
        assert p["actual_mbps"] == pytest.approx(1.0)

    def test_category_stopping_is_not_a_reset(self):
        samples = [
            {"timestamp": "2026-01-15T12:00:00Z", "category": "video", "total_bytes_tx": 100000000},
            {"timestamp": "2026-01-15T12:00:00Z", "category": "voip", "total_bytes_tx": 0},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "video", "total_bytes_tx": 100625000},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "voip", "total_bytes_tx": 625000},
            {"timestamp": "2026-01-15T12:00:10Z", "category": "voip", "total_bytes_tx": 1250000},
        ]
        points = series_rates(samples, 5)
        assert [p["actual_mbps"] for p in points] == pytest.approx([2.0, 1.0])

    def test_new_category_waits_for_baseline(self):
        samples = [
            {"timestamp": "2026-01-15T12:00:00Z", "category": "voip", "total_bytes_tx": 0},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "voip", "total_bytes_tx": 625000},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "video", "total_bytes_tx": 500000000},
        ]
        [p] = series_rates(samples, 5)
        assert p["actual_mbps"] == pytest.approx(1.0)

    def test_latency_weighted_by_flows(self):
        samples = [
            {"timestamp": "2026-01-15T12:00:00Z", "category": "voip", "avg_latency": 10.0, "active_flows": 3},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "voip", "avg_latency": 10.0, "active_flows": 3},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "web", "avg_latency": 40.0, "active_flows": 1},
        ]
        [p] = series_rates(samples, 5)
        assert p["delay_ms"] == 17.5
        assert p["jitter_ms"] == 7.5

    def test_loss_summed_over_shared_categories(self):
        samples = [
            {"timestamp": "2026-01-15T12:00:00Z", "category": "voip", "total_pkts_tx": 100, "total_pkts_rx": 100},
            {"timestamp": "2026-01-15T12:00:00Z", "category": "web", "total_pkts_tx": 0, "total_pkts_rx": 0},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "voip", "total_pkts_tx": 200, "total_pkts_rx": 190},
            {"timestamp": "2026-01-15T12:00:05Z", "category": "web", "total_pkts_tx": 100, "total_pkts_rx": 100},
        ]
        [p] = series_rates(samples, 5)
        assert p["packet_loss"] == pytest.approx(5.0)


class TestBucketize:
    def test_averages_within_bucket(self):
        points = [
            {"timestamp": "2026-01-15T12:00:01Z", "actual_mbps": 1.0, "delay_ms": 10.0, "jitter_ms": None, "packet_loss": 0.0},
            {"timestamp": "2026-01-15T12:00:03Z", "actual_mbps": 3.0, "delay_ms": 20.0, "jitter_ms": 2.0, "packet_loss": 0.0},
            {"timestamp": "2026-01-15T12:00:06Z", "actual_mbps": 5.0, "delay_ms": 30.0, "jitter_ms": 1.0, "packet_loss": 1.0},
        ]
        buckets = bucketize(points, 5)
        assert [b["key"] for b in buckets] == ["2026-01-15T12:00:00Z", "2026-01-15T12:00:05Z"]
        assert buckets[0]["actual_mbps"] == 2.0
        assert buckets[0]["delay_ms"] == 15.0
        assert buckets[0]["jitter_ms"] == 2.0
        assert buckets[0]["samples"] == 2
        assert buckets[1]["packet_loss"] == 1.0

    def test_output_sorted(self):
        points = [
            {"timestamp": "2026-01-15T12:00:20Z", "actual_mbps": 1.0},
            {"timestamp": "2026-01-15T12:00:00Z", "actual_mbps": 2.0},
        ]
        assert [b["key"] for b in bucketize(points, 5, fields=("actual_mbps",))] == [
            "2026-01-15T12:00:00Z", "2026-01-15T12:00:20Z",
        ]


# ── Metrics Aggregator ──


class TestAccuracyMetrics:
    def test_mape_and_rmse(self):
        records = [
            {"actual_mbps": 100, "predicted_mbps": 110},
            {"actual_mbps": 200, "predicted_mbps": 190},
        ]
        assert mape(records) == pytest.approx(7.5)
        assert rmse(records) == pytest.approx(10.0)

    def test_invalid_records_excluded(self):
        records = [
            {"actual_mbps": 100, "predicted_mbps": 110},
            {"actual_mbps": 0, "predicted_mbps": 50},
            {"actual_mbps": 80, "predicted_mbps": None},
            {"actual_mbps": None, "predicted_mbps": 10},
            {"actual_mbps": 40, "predicted_mbps": 0},
        ]
        assert mape(records) == pytest.approx(10.0)
        assert rmse(records) == pytest.approx(10.0)

    def test_empty_is_zero(self):
        assert mape([]) == 0.0
        assert rmse([{"actual_mbps": 0, "predicted_mbps": 0}]) == 0.0

    def test_never_nan(self):
        value = mape([{"actual_mbps": 0.0, "predicted_mbps": 0.0}])
        assert not math.isnan(value)

    def test_abs_pct_error(self):
        assert abs_pct_error(100, 90) == pytest.approx(10.0)
        assert abs_pct_error(0, 90) is None
        assert abs_pct_error(100, None) is None

    def test_mean_or_zero(self):
        assert mean_or_zero([None, 2, 4]) == 3
        assert mean_or_zero([None]) == 0.0
        assert mean_or_zero(iter([])) == 0.0


class TestClassifyStatus:
    def test_normal(self):
        assert classify_status(500, delay_ms=20, loss_pct=0) == STATUS_NORMAL

    def test_load_thresholds(self):
        assert classify_status(950) == STATUS_WARNING
        assert classify_status(1200) == STATUS_CRITICAL

    def test_thresholds_are_strict(self):
        assert classify_status(900) == STATUS_NORMAL
        assert classify_status(1100) == STATUS_WARNING

    def test_qos_escalates_normal_to_warning(self):
        assert classify_status(500, delay_ms=200) == STATUS_WARNING
        assert classify_status(500, loss_pct=2.0) == STATUS_WARNING
        assert classify_status(500, jitter_ms=45) == STATUS_WARNING

    def test_qos_escalates_warning_to_critical(self):
        assert classify_status(950, delay_ms=200) == STATUS_CRITICAL

    def test_critical_stays_critical(self):
        assert classify_status(1200, delay_ms=200, loss_pct=5) == STATUS_CRITICAL

    def test_no_prediction_uses_qos_only(self):
        assert classify_status(None) == STATUS_NORMAL
        assert classify_status(None, delay_ms=300) == STATUS_WARNING

    def test_custom_thresholds(self):
        thresholds = {"warning_mbps": 10, "critical_mbps": 20, "max_delay_ms": 50}
        assert classify_status(15, thresholds=thresholds) == STATUS_WARNING
        assert classify_status(15, delay_ms=60, thresholds=thresholds) == STATUS_CRITICAL
