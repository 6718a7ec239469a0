"""Forecast view: actual vs. predicted traffic with QoS and reroute metrics.

Builds the payload for the forecast dashboard from the three upstream
tables. Each call reads the store once and recomputes everything; nothing
is cached between requests.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from . import timeseries as ts
from .storage import REROUTE_EVENT_TYPES
from .tz import format_utc, parse_utc, seconds_between, to_local_display, utc_now

log = logging.getLogger("voipsight.forecast")

RANGES = {
    "10s": 10,
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
}
DEFAULT_RANGE = "5m"

# How many buckets away the merger may look for a prediction
_NEIGHBOR_BUCKETS = 2


@dataclass
class ForecastSettings:
    """Tunables for one forecast computation."""

    bucket_seconds: int = 5
    collect_interval: int = 5
    mbps_divisor: float = ts.BITS_PER_MBIT
    event_window_minutes: int = 60
    tz_name: str = ""
    reroute_types: tuple = REROUTE_EVENT_TYPES
    event_limit: int = 50
    thresholds: dict = field(default_factory=lambda: dict(ts.DEFAULT_THRESHOLDS))

    @classmethod
    def from_config(cls, config_mgr):
        return cls(
            bucket_seconds=config_mgr.get_bucket_seconds(),
            collect_interval=config_mgr.get_collect_interval(),
            mbps_divisor=config_mgr.get("mbps_divisor") or ts.BITS_PER_MBIT,
            event_window_minutes=config_mgr.get("event_window_minutes"),
            tz_name=config_mgr.get("timezone") or "",
            thresholds=config_mgr.get_thresholds(),
        )


def parse_range(value, default=DEFAULT_RANGE):
    """Return the window length in seconds for a range name, or None if invalid."""
    if not value:
        value = default
    return RANGES.get(value)


def _shift(utc_ts, seconds):
    return format_utc(parse_utc(utc_ts) + timedelta(seconds=seconds))


def _round(value, digits):
    return round(value, digits) if value is not None else None


def _convergence_by_bucket(reroutes, width):
    """Mean reroute latency (ms) of the events falling into each bucket."""
    grouped = {}
    for event in reroutes:
        if event["latency_ms"] is None:
            continue
        grouped.setdefault(ts.bucket_key(event["timestamp"], width), []).append(event["latency_ms"])
    return {key: sum(v) / len(v) for key, v in grouped.items()}


def build_chart_records(merged, settings, convergence=None):
    """Turn merged bucket records into chart records with status and diagnostics."""
    convergence = convergence or {}
    records = []
    for i, m in enumerate(merged):
        predicted = m["predicted"]
        detection = None
        if m["predicted_key"] is not None:
            detection = abs(seconds_between(m["key"], m["predicted_key"])) * 1000
        records.append({
            "id": i + 1,
            "timestamp": m["key"],
            "run_time": to_local_display(m["key"], settings.tz_name, "%H:%M:%S"),
            "actual_mbps": _round(m["actual_mbps"], 2),
            "predicted_mbps": _round(predicted, 2),
            "delay_ms": _round(m["delay_ms"], 1),
            "jitter_ms": _round(m["jitter_ms"], 2),
            "packet_loss": _round(m["packet_loss"], 2),
            "status": ts.classify_status(
                predicted, m["delay_ms"], m["packet_loss"],
                settings.thresholds, jitter_ms=m["jitter_ms"],
            ),
            "mape": _round(ts.abs_pct_error(m["actual_mbps"], predicted), 2),
            "detection_time": _round(detection, 1),
            "convergence_time": round(convergence.get(m["key"], 0), 1),
        })
    return records


def build_forecast(storage, range_seconds, settings=None, now=None):
    """Assemble the forecast payload for the last range_seconds.

    Args:
        storage: TelemetryStorage (or compatible) instance
        range_seconds: window length
        settings: ForecastSettings, defaults if None
        now: UTC timestamp string to anchor the window (defaults to now)

    Returns:
        dict with data, system_events, latest_status, system_metrics and
        model_metrics
    """
    settings = settings or ForecastSettings()
    width = settings.bucket_seconds
    now = now or utc_now()
    start = _shift(now, -range_seconds)

    # Actual series: counters -> rates -> buckets
    totals = storage.get_traffic_totals(start, now)
    points = ts.series_rates(totals, settings.collect_interval)
    actual = ts.bucketize(points, width)

    # Predicted series, padded so edge buckets can reach their neighbors
    neighbor_pad = _NEIGHBOR_BUCKETS * width
    forecasts = storage.get_forecasts(_shift(start, -neighbor_pad), _shift(now, neighbor_pad))
    predicted = ts.predicted_map(forecasts, width, settings.mbps_divisor)

    carry = None
    seed = storage.get_last_positive_forecast(start)
    if seed:
        carry = ts.Carry(
            ts.bucket_key(seed["ts_created"], width),
            seed["y_pred"] / settings.mbps_divisor,
        )
    merged, _ = ts.merge_series(actual, predicted, width, carry)

    # Controller reactions in the trailing event window
    event_since = _shift(now, -settings.event_window_minutes * 60)
    reroutes = storage.get_reroute_latencies(event_since, settings.reroute_types)
    events = storage.get_system_events(event_since, limit=settings.event_limit)

    data = build_chart_records(merged, settings, _convergence_by_bucket(reroutes, width))

    log.debug(
        "Forecast: %d samples -> %d buckets, %d predictions, %d reroutes",
        len(points), len(data), len(predicted), len(reroutes),
    )

    return {
        "data": data,
        "system_events": events,
        "latest_status": data[-1] if data else None,
        "system_metrics": {
            "mttd": round(ts.mean_or_zero(r["detection_time"] for r in data), 2),
            "mttr": round(ts.mean_or_zero(e["latency_ms"] for e in reroutes), 2),
            "reroute_count": len(reroutes),
        },
        # Scored on unrounded rates so low-rate traffic is not filtered out
        "model_metrics": {
            "mape": round(ts.mape(merged, predicted_field="predicted"), 2),
            "rmse": round(ts.rmse(merged, predicted_field="predicted"), 2),
        },
    }
