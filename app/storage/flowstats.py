"""Flow statistics mixin (traffic telemetry table)."""

import logging
import sqlite3

from .base import UNKNOWN_CATEGORY, utc_sql

log = logging.getLogger("voipsight.storage")

_CATEGORY_FILTER = "category IS NOT NULL AND category != ?"
_TS = utc_sql("timestamp")
_BOUND = utc_sql("?")


class FlowStatsMixin:

    def save_flow_samples(self, samples):
        """Bulk insert flow samples. Returns count of inserted rows."""
        if not samples:
            return 0
        with sqlite3.connect(self.db_path) as conn:
            conn.executemany(
                "INSERT INTO flow_stats (timestamp, dpid, src_ip, dst_ip, bytes_tx, "
                "bytes_rx, pkts_tx, pkts_rx, latency_ms, category) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        s["timestamp"], s.get("dpid"), s.get("src_ip"), s.get("dst_ip"),
                        s.get("bytes_tx", 0), s.get("bytes_rx"),
                        s.get("pkts_tx", 0), s.get("pkts_rx"),
                        s.get("latency_ms"), s.get("category"),
                    )
                    for s in samples
                ],
            )
        log.debug("Saved %d flow samples", len(samples))
        return len(samples)

    def get_latest_timestamps(self, limit=2):
        """Return the N most recent distinct sample timestamps (UTC), newest first."""
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT DISTINCT {_TS} AS ts FROM flow_stats "
                f"WHERE {_TS} IS NOT NULL ORDER BY ts DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [r[0] for r in rows]

    def get_category_snapshot(self, timestamp):
        """Aggregate flows per category at one timestamp.

        Returns dict category -> {total_bytes_tx, total_pkts_tx,
        avg_latency, active_flows}, excluding NULL and 'unknown'.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT category, SUM(bytes_tx) AS total_bytes_tx, "
                "SUM(pkts_tx) AS total_pkts_tx, AVG(latency_ms) AS avg_latency, "
                "COUNT(id) AS active_flows "
                f"FROM flow_stats WHERE {_TS} = {_BOUND} AND {_CATEGORY_FILTER} "
                "GROUP BY category ORDER BY category",
                (timestamp, UNKNOWN_CATEGORY),
            ).fetchall()
        return {r["category"]: dict(r) for r in rows}

    def get_categories(self):
        """Return distinct known categories, sorted."""
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT DISTINCT category FROM flow_stats WHERE {_CATEGORY_FILTER} "
                "ORDER BY category",
                (UNKNOWN_CATEGORY,),
            ).fetchall()
        return [r[0] for r in rows]

    def get_flow_preview(self, limit=50):
        """Return the oldest N (timestamp, bytes_tx) rows."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT timestamp, bytes_tx FROM flow_stats ORDER BY {_TS}, id LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]

    def _totals_query(self, where):
        return (
            f"SELECT {_TS} AS ts, category, SUM(bytes_tx) AS total_bytes_tx, "
            "SUM(pkts_tx) AS total_pkts_tx, SUM(pkts_rx) AS total_pkts_rx, "
            "COUNT(pkts_rx) AS rx_rows, AVG(latency_ms) AS avg_latency, "
            "COUNT(id) AS active_flows "
            f"FROM flow_stats WHERE {where} AND {_CATEGORY_FILTER} "
            "GROUP BY ts, category ORDER BY ts, category"
        )

    def get_traffic_totals(self, start_ts, end_ts):
        """Return per-(timestamp, category) counter totals, oldest first.

        Covers start_ts..end_ts plus the last sample before start_ts, which
        the caller needs as the counter baseline for the first point.
        Timestamps come back normalised to UTC 'YYYY-MM-DDTHH:MM:SSZ'.
        total_pkts_rx is None unless every flow of the category reported rx.
        """
        with self._connect() as conn:
            baseline = conn.execute(
                f"SELECT MAX({_TS}) FROM flow_stats "
                f"WHERE {_TS} < {_BOUND} AND {_CATEGORY_FILTER}",
                (start_ts, UNKNOWN_CATEGORY),
            ).fetchone()[0]
            rows = []
            if baseline:
                rows += conn.execute(
                    self._totals_query(f"{_TS} = ?"), (baseline, UNKNOWN_CATEGORY)
                ).fetchall()
            rows += conn.execute(
                self._totals_query(f"{_TS} >= {_BOUND} AND {_TS} <= {_BOUND}"),
                (start_ts, end_ts, UNKNOWN_CATEGORY),
            ).fetchall()

        totals = []
        for r in rows:
            total = dict(r)
            total["timestamp"] = total.pop("ts")
            if total.pop("rx_rows") < total["active_flows"]:
                total["total_pkts_rx"] = None
            totals.append(total)
        return totals
