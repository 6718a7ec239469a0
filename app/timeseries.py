"""Time-series alignment for the forecast and KPI views.

Two independently sampled series are lined up on a common time axis:
cumulative flow counters sampled by the collector every few seconds, and
model predictions inserted by the forecasting process on its own cadence.

Pipeline:
    bucket_key()       fixed-width bucket per timestamp (the join key)
    series_rates()     per-category counter deltas -> summed rates (reset aware)
    bucketize()        average samples that share a bucket
    merge_series()     join actual + predicted with neighbor probing and
                       forward-fill of the last positive prediction
    mape() / rmse()    model accuracy over the merged records
    classify_status()  NORMAL / WARNING / CRITICAL with QoS escalation

Everything here is a pure function of its arguments.
"""

import math
from collections import namedtuple
from datetime import datetime, timedelta, timezone

from .tz import format_utc, parse_utc

STATUS_NORMAL = "NORMAL"
STATUS_WARNING = "WARNING"
STATUS_CRITICAL = "CRITICAL (REROUTE)"
_STATUS_LEVELS = (STATUS_NORMAL, STATUS_WARNING, STATUS_CRITICAL)

BITS_PER_MBIT = 1000000.0

# Neighbor offsets in bucket widths, nearest first, earlier before later
_NEIGHBOR_STEPS = (-1, 1, -2, 2)

DEFAULT_THRESHOLDS = {
    "warning_mbps": 900.0,
    "critical_mbps": 1100.0,
    "max_delay_ms": 150.0,
    "max_jitter_ms": 30.0,
    "max_loss_pct": 1.0,
}

Carry = namedtuple("Carry", ["key", "value"])


# ── Bucketizer ──


def bucket_key(ts, width):
    """Return the canonical key of the width-second bucket containing ts.

    The key is the timestamp truncated to the minute plus
    floor(second / width) * width, so a bucket never crosses a minute
    boundary. ts may be a UTC string or a datetime.
    """
    if width < 1:
        raise ValueError("bucket width must be >= 1 second")
    dt = ts if isinstance(ts, datetime) else parse_utc(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    second = (dt.second // width) * width
    return format_utc(dt.replace(second=second, microsecond=0))


def neighbor_keys(key, width):
    """Keys of the buckets +-1 and +-2 widths away from key, nearest first."""
    start = parse_utc(key)
    keys = []
    for step in _NEIGHBOR_STEPS:
        candidate = bucket_key(start + timedelta(seconds=step * width), width)
        if candidate != key and candidate not in keys:
            keys.append(candidate)
    return keys


# ── Series Merger ──


def resolve_prediction(key, predicted, width):
    """Find the prediction for key: exact match first, then neighbor buckets.

    Returns (matched_key, value) or (None, None).
    """
    if key in predicted:
        return key, predicted[key]
    for candidate in neighbor_keys(key, width):
        if candidate in predicted:
            return candidate, predicted[candidate]
    return None, None


def merge_series(actual, predicted, width, carry=None):
    """Attach a predicted value to every actual point.

    Args:
        actual: ordered sequence of dicts, each with a bucket "key"
        predicted: dict bucket key -> predicted value
        width: bucket width in seconds (for neighbor probing)
        carry: Carry of the last positive prediction seen before the
            first actual point, or None

    Returns:
        (records, carry) where records are copies of the actual points with
        "predicted" and "predicted_key" added, in input order, and carry is
        the Carry to thread into the next call.

    Resolution order: exact key, neighbors at +-1/+-2 widths, forward-fill
    from carry, else None. Only a strictly positive prediction replaces the
    carry; a zero or negative one falls back to the carry when there is one.
    """
    records = []
    for point in actual:
        match_key, value = resolve_prediction(point["key"], predicted, width)
        if value is not None and value > 0:
            carry = Carry(match_key, value)
        elif carry is not None:
            match_key, value = carry
        record = dict(point)
        record["predicted"] = value
        record["predicted_key"] = match_key if value is not None else None
        records.append(record)
    return records, carry


def predicted_map(forecasts, width, divisor=BITS_PER_MBIT):
    """Map bucket key -> scaled prediction; the latest point in a bucket wins.

    forecasts must be ordered by ts_created ascending.
    """
    result = {}
    for row in forecasts:
        if row.get("y_pred") is None or not row.get("ts_created"):
            continue
        result[bucket_key(row["ts_created"], width)] = row["y_pred"] / divisor
    return result


# ── Counter Delta Calculator ──


def counter_delta(now, prev):
    """Delta between two cumulative counter readings.

    A negative delta means the counter was reset between the readings; the
    current value is then the amount counted since the reset.
    """
    now = now or 0
    prev = prev or 0
    delta = now - prev
    if delta < 0:
        return now
    return delta


def sample_interval(ts_now, ts_prev, nominal):
    """Seconds between two sample timestamps, or nominal if unusable."""
    if not ts_prev:
        return nominal
    gap = (parse_utc(ts_now) - parse_utc(ts_prev)).total_seconds()
    if gap <= 0:
        return nominal
    return gap


def jitter_proxy(latency_now, latency_prev):
    """Instantaneous jitter approximation: |latency_now - latency_prev|.

    Not a windowed variance; only two consecutive averages are compared.
    """
    if latency_now is None:
        return None
    if latency_prev is None:
        return 0.0
    return abs(float(latency_now) - float(latency_prev))


def loss_proxy(pkts_tx_now, pkts_tx_prev, pkts_rx_now, pkts_rx_prev):
    """Packet loss percent from tx/rx counter deltas, 0 if rx is unknown."""
    if pkts_rx_now is None or pkts_rx_prev is None:
        return 0.0
    sent = counter_delta(pkts_tx_now, pkts_tx_prev)
    if sent <= 0:
        return 0.0
    received = counter_delta(pkts_rx_now, pkts_rx_prev)
    return max(0, sent - received) / sent * 100


def _empty_kpi(category, ts_now):
    return {
        "timestamp": ts_now,
        "category": category,
        "throughput_bps": None,
        "pps_tx": None,
        "avg_latency_ms": None,
        "avg_jitter_ms": None,
        "active_flows": None,
    }


def category_rates(now, prev, ts_now, interval):
    """Per-category live KPIs from two aggregated snapshots.

    Args:
        now: dict category -> snapshot at ts_now (total_bytes_tx,
            total_pkts_tx, avg_latency, active_flows)
        prev: dict category -> snapshot at the previous timestamp
        ts_now: timestamp of the newest snapshot
        interval: seconds between the two snapshots (> 0)

    A category present only in prev gets an explicit all-null record so
    "no data yet" stays distinct from zero traffic.
    """
    categories = list(now) + [c for c in prev if c not in now]
    results = []
    for category in categories:
        current = now.get(category)
        if current is None:
            results.append(_empty_kpi(category, ts_now))
            continue

        latency_now = float(current.get("avg_latency") or 0)
        before = prev.get(category) or {
            "total_bytes_tx": 0,
            "total_pkts_tx": 0,
            "avg_latency": latency_now,
        }
        delta_bytes = counter_delta(current.get("total_bytes_tx"), before.get("total_bytes_tx"))
        delta_pkts = counter_delta(current.get("total_pkts_tx"), before.get("total_pkts_tx"))
        latency_prev = float(before.get("avg_latency") or 0)

        results.append({
            "timestamp": ts_now,
            "category": category,
            "throughput_bps": delta_bytes / interval,
            "pps_tx": delta_pkts / interval,
            "avg_latency_ms": latency_now,
            "avg_jitter_ms": jitter_proxy(latency_now, latency_prev),
            "active_flows": int(current.get("active_flows") or 0),
        })
    return results


def _snapshots(samples):
    """Group per-category totals by timestamp, keeping input order."""
    grouped = {}
    for row in samples:
        grouped.setdefault(row["timestamp"], {})[row.get("category")] = row
    return list(grouped.items())


def _flow_weighted_latency(snapshot):
    total = 0.0
    flows = 0
    for row in snapshot.values():
        if row.get("avg_latency") is None:
            continue
        n = row.get("active_flows") or 1
        total += row["avg_latency"] * n
        flows += n
    return total / flows if flows else None


def _shared_loss(now, prev, categories):
    """Packet loss percent over the categories present in both snapshots."""
    sent = 0
    received = 0
    for category in categories:
        before, after = prev[category], now[category]
        if after.get("total_pkts_rx") is None or before.get("total_pkts_rx") is None:
            return 0.0
        sent += counter_delta(after.get("total_pkts_tx"), before.get("total_pkts_tx"))
        received += counter_delta(after.get("total_pkts_rx"), before.get("total_pkts_rx"))
    return loss_proxy(sent, 0, received, 0)


def series_rates(samples, nominal_interval):
    """Turn ordered per-(timestamp, category) totals into total rate points.

    Each sample needs timestamp, total_bytes_tx and optionally category,
    total_pkts_tx, total_pkts_rx, avg_latency and active_flows. Counter
    deltas are taken per category between consecutive timestamps and then
    summed; a category missing on either side contributes nothing. The
    first timestamp only serves as the baseline, so N timestamps yield
    N-1 points.
    """
    snapshots = _snapshots(samples)
    points = []
    for (ts_prev, prev), (ts_now, now) in zip(snapshots, snapshots[1:]):
        interval = sample_interval(ts_now, ts_prev, nominal_interval)
        shared = [c for c in now if c in prev]
        delta_bytes = sum(
            counter_delta(now[c].get("total_bytes_tx"), prev[c].get("total_bytes_tx"))
            for c in shared
        )
        latency_now = _flow_weighted_latency(now)
        points.append({
            "timestamp": ts_now,
            "actual_mbps": delta_bytes * 8 / interval / BITS_PER_MBIT,
            "delay_ms": latency_now,
            "jitter_ms": jitter_proxy(latency_now, _flow_weighted_latency(prev)),
            "packet_loss": _shared_loss(now, prev, shared),
        })
    return points


def bucketize(points, width, fields=("actual_mbps", "delay_ms", "jitter_ms", "packet_loss")):
    """Group timestamped points by bucket and average each field.

    None values are ignored; a field with no values in a bucket stays None.
    Output is ordered by bucket key ascending.
    """
    groups = {}
    for point in points:
        key = bucket_key(point["timestamp"], width)
        groups.setdefault(key, []).append(point)

    result = []
    for key in sorted(groups):
        bucket = {"key": key, "samples": len(groups[key])}
        for field in fields:
            values = [p[field] for p in groups[key] if p.get(field) is not None]
            bucket[field] = sum(values) / len(values) if values else None
        result.append(bucket)
    return result


# ── Metrics Aggregator ──


def abs_pct_error(actual, predicted):
    """|actual - predicted| / actual * 100, or None unless both are > 0."""
    if actual is None or predicted is None or actual <= 0 or predicted <= 0:
        return None
    return abs(actual - predicted) / actual * 100


def _scored_pairs(records, actual_field, predicted_field):
    pairs = []
    for r in records:
        actual = r.get(actual_field)
        predicted = r.get(predicted_field)
        if actual is not None and predicted is not None and actual > 0 and predicted > 0:
            pairs.append((actual, predicted))
    return pairs


def mape(records, actual_field="actual_mbps", predicted_field="predicted_mbps"):
    """Mean absolute percentage error over records with actual>0 and predicted>0."""
    pairs = _scored_pairs(records, actual_field, predicted_field)
    if not pairs:
        return 0.0
    return sum(abs(a - p) / a * 100 for a, p in pairs) / len(pairs)


def rmse(records, actual_field="actual_mbps", predicted_field="predicted_mbps"):
    """Root mean squared error over the same filtered set as mape()."""
    pairs = _scored_pairs(records, actual_field, predicted_field)
    if not pairs:
        return 0.0
    return math.sqrt(sum((a - p) ** 2 for a, p in pairs) / len(pairs))


def mean_or_zero(values):
    """Mean of the non-None values, 0 when there are none."""
    present = [v for v in values if v is not None]
    if not present:
        return 0.0
    return sum(present) / len(present)


def classify_status(predicted, delay_ms=None, loss_pct=None, thresholds=None, jitter_ms=None):
    """Classify one record as NORMAL, WARNING or CRITICAL (REROUTE).

    The predicted load sets the base level; a QoS breach (delay, jitter or
    loss over its limit) escalates it by one level. Never de-escalates.
    """
    t = dict(DEFAULT_THRESHOLDS)
    if thresholds:
        t.update({k: v for k, v in thresholds.items() if v is not None})

    level = 0
    if predicted is not None:
        if predicted > t["critical_mbps"]:
            level = 2
        elif predicted > t["warning_mbps"]:
            level = 1

    breach = (
        (delay_ms is not None and delay_ms > t["max_delay_ms"])
        or (jitter_ms is not None and jitter_ms > t["max_jitter_ms"])
        or (loss_pct is not None and loss_pct > t["max_loss_pct"])
    )
    if breach:
        level = min(level + 1, len(_STATUS_LEVELS) - 1)
    return _STATUS_LEVELS[level]
