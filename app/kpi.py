"""Live per-category KPIs from the two most recent telemetry samples."""

from .timeseries import category_rates, sample_interval


def build_category_stats(storage, collect_interval=5):
    """Return one KPI record per category for the newest sample timestamp.

    Rates come from the delta against the previous distinct timestamp.
    With only one timestamp in the store the previous counters count as
    zero and the nominal collect_interval is used.
    """
    timestamps = storage.get_latest_timestamps(limit=2)
    if not timestamps:
        return []

    ts_now = timestamps[0]
    ts_prev = timestamps[1] if len(timestamps) > 1 else None
    interval = sample_interval(ts_now, ts_prev, collect_interval)

    stats_now = storage.get_category_snapshot(ts_now)
    stats_prev = storage.get_category_snapshot(ts_prev) if ts_prev else {}
    return category_rates(stats_now, stats_prev, ts_now, interval)
