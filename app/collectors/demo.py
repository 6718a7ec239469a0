"""Demo collector: writes realistic SDN telemetry for running without a network."""

import logging
import math
import random
from datetime import datetime, timedelta, timezone

from .base import Collector, CollectorResult
from ..timeseries import BITS_PER_MBIT, DEFAULT_THRESHOLDS
from ..tz import format_utc

log = logging.getLogger("voipsight.collector.demo")

# category, dpid, src_ip, dst_ip, share of total load, mean packet size (bytes)
_FLOWS = [
    ("voip", "1", "10.0.0.1", "10.0.0.3", 0.10, 200),
    ("voip", "1", "10.0.0.5", "10.0.0.3", 0.08, 200),
    ("video", "2", "10.0.0.2", "10.0.0.6", 0.28, 1200),
    ("web", "2", "10.0.0.7", "10.0.0.8", 0.20, 900),
    ("background", "3", "10.0.0.4", "10.0.0.9", 0.32, 1400),
    ("unknown", "3", "10.0.0.10", "10.0.0.11", 0.02, 600),
]

# A burst ramps up during the last third of every cycle
_CYCLE_STEPS = 60
_BURST_START = 40
_BURST_MBPS_PER_STEP = 35

_RETENTION_HOURS = 24
_CLEANUP_EVERY = 720


class DemoCollector(Collector):
    """Simulates the upstream collector, forecaster and reroute controller.

    Each poll appends one telemetry sample per flow (cumulative counters),
    one prediction and, when the prediction crosses the thresholds, a
    REROUTE / REROUTE_REVERT event. The API pipeline reads this data
    exactly as it would read the real upstream tables.
    """

    name = "demo"

    def __init__(self, storage, poll_interval=5, thresholds=None, seed_minutes=60, rng=None):
        super().__init__(poll_interval)
        self._storage = storage
        self._thresholds = dict(DEFAULT_THRESHOLDS, **(thresholds or {}))
        self._seed_minutes = seed_minutes
        self._rng = rng or random.Random()
        self._step = 0
        self._poll_count = 0
        self._reroute_active = False
        self._counters = [
            {"bytes_tx": 0, "bytes_rx": 0, "pkts_tx": 0, "pkts_rx": 0} for _ in _FLOWS
        ]

    def _load_mbps(self, step):
        """Deterministic traffic shape: slow wave plus a periodic burst."""
        base = 500 + 200 * math.sin(step / 5)
        phase = step % _CYCLE_STEPS
        if phase > _BURST_START:
            base += (phase - _BURST_START) * _BURST_MBPS_PER_STEP
        return base

    def _flow_samples(self, ts_str, load):
        """Advance every flow's counters by one interval of traffic."""
        rng = self._rng
        loss_pct = rng.uniform(0, 2.0) if load > self._thresholds["critical_mbps"] else 0.0
        samples = []
        for (category, dpid, src, dst, share, pkt_size), c in zip(_FLOWS, self._counters):
            sent = int(load * share * BITS_PER_MBIT / 8 * self.poll_interval_seconds)
            pkts = max(1, sent // pkt_size)
            lost = int(pkts * loss_pct / 100)
            c["bytes_tx"] += sent
            c["bytes_rx"] += sent - lost * pkt_size
            c["pkts_tx"] += pkts
            c["pkts_rx"] += pkts - lost
            latency = 20 + load / 1000 * 80 + rng.uniform(-5, 5)
            if category == "voip":
                latency -= 5
            samples.append({
                "timestamp": ts_str,
                "dpid": dpid,
                "src_ip": src,
                "dst_ip": dst,
                "latency_ms": round(max(latency, 1.0), 2),
                "category": category,
                **c,
            })
        return samples

    def _controller_event(self, when, predicted_mbps, y_pred):
        """Return (timestamp, type, description, trigger) or None."""
        if predicted_mbps > self._thresholds["critical_mbps"] and not self._reroute_active:
            self._reroute_active = True
            react = when + timedelta(seconds=self._rng.choice((1, 2)))
            return (
                format_utc(react), "REROUTE",
                f"Congestion predicted ({predicted_mbps:.0f} Mbps), rerouting voice traffic",
                y_pred,
            )
        if predicted_mbps < self._thresholds["warning_mbps"] and self._reroute_active:
            self._reroute_active = False
            return (
                format_utc(when), "REROUTE_REVERT",
                f"Load back to {predicted_mbps:.0f} Mbps, restoring primary path",
                y_pred,
            )
        return None

    def _tick(self, when):
        """Write one interval worth of telemetry, prediction and events."""
        self._step += 1
        ts_str = format_utc(when)
        load = max(0.0, self._load_mbps(self._step) + self._rng.uniform(-20, 20))

        self._storage.save_flow_samples(self._flow_samples(ts_str, load))

        predicted_mbps = max(0.0, self._load_mbps(self._step + 1) + self._rng.uniform(-10, 50))
        y_pred = predicted_mbps * BITS_PER_MBIT
        self._storage.save_forecast(ts_str, y_pred)

        event = self._controller_event(when, predicted_mbps, y_pred)
        if event:
            self._storage.save_system_event(*event)
        return load

    def _seed_history(self, now):
        """Backfill the last seed_minutes so every chart range has data."""
        steps = self._seed_minutes * 60 // self.poll_interval_seconds
        start = now - timedelta(seconds=steps * self.poll_interval_seconds)
        for i in range(steps):
            self._tick(start + timedelta(seconds=i * self.poll_interval_seconds))
        log.info("Demo: seeded %d samples (%d min)", steps, self._seed_minutes)

    def collect(self) -> CollectorResult:
        self._poll_count += 1
        now = datetime.now(timezone.utc).replace(microsecond=0)

        if self._poll_count == 1 and self._seed_minutes > 0:
            if not self._storage.get_latest_timestamps(limit=1):
                self._seed_history(now)

        load = self._tick(now)

        if self._poll_count % _CLEANUP_EVERY == 0:
            self._storage.delete_older_than(_RETENTION_HOURS)

        return CollectorResult.ok(self.name, {"load_mbps": round(load, 2)})
