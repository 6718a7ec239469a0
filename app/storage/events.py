"""System event log mixin (actions logged by the closed-loop controller)."""

import sqlite3

from .base import utc_sql
from ..tz import seconds_between

REROUTE_EVENT_TYPES = ("REROUTE", "REROUTE_ACTIVE")

_TS = utc_sql("timestamp")
_BOUND = utc_sql("?")
_E_TS = utc_sql("e.timestamp")
_F_TS = utc_sql("f.ts_created")
_EVENT_COLUMNS = f"id, {_TS} AS timestamp, event_type, description, trigger_value"


class EventMixin:

    def save_system_event(self, timestamp, event_type, description="", trigger_value=0):
        """Save a single controller event. Returns the new event id."""
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                "INSERT INTO system_events (timestamp, event_type, description, trigger_value) "
                "VALUES (?, ?, ?, ?)",
                (timestamp, event_type, description, trigger_value),
            )
            return cur.lastrowid

    def get_system_events(self, since_ts, limit=50):
        """Return events at or after since_ts, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM system_events "
                f"WHERE {_TS} >= {_BOUND} ORDER BY {_TS} DESC, id DESC LIMIT ?",
                (since_ts, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_reroute_latencies(self, since_ts, event_types=REROUTE_EVENT_TYPES):
        """Return reroute events since since_ts with their reaction latency.

        Each event is paired with the newest forecast created at or before
        it (nearest-preceding match, NULL when there is none). latency_ms is
        the time between that forecast and the event, or None.
        Oldest first.
        """
        if not event_types:
            return []
        placeholders = ", ".join("?" for _ in event_types)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT e.id, {_E_TS} AS timestamp, e.event_type, e.description, "
                f"e.trigger_value, (SELECT {_F_TS} FROM forecast_1h f "
                f" WHERE {_F_TS} <= {_E_TS} "
                f" ORDER BY {_F_TS} DESC LIMIT 1) AS forecast_ts "
                "FROM system_events e "
                f"WHERE {_E_TS} >= {_BOUND} AND e.event_type IN ({placeholders}) "
                f"ORDER BY {_E_TS}, e.id",
                (since_ts, *event_types),
            ).fetchall()

        results = []
        for r in rows:
            event = dict(r)
            if event["forecast_ts"]:
                event["latency_ms"] = seconds_between(event["timestamp"], event["forecast_ts"]) * 1000
            else:
                event["latency_ms"] = None
            results.append(event)
        return results
