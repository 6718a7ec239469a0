"""Forecast output mixin (predictions written by the forecasting process)."""

import sqlite3

from .base import utc_sql

_TS = utc_sql("ts_created")
_BOUND = utc_sql("?")


class ForecastMixin:

    def save_forecast(self, ts_created, y_pred):
        """Save a single prediction. Returns the new row id."""
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                "INSERT INTO forecast_1h (ts_created, y_pred) VALUES (?, ?)",
                (ts_created, y_pred),
            )
            return cur.lastrowid

    def get_forecasts(self, start_ts, end_ts):
        """Return predictions created within a time range, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT id, {_TS} AS ts_created, y_pred FROM forecast_1h "
                f"WHERE {_TS} >= {_BOUND} AND {_TS} <= {_BOUND} "
                f"ORDER BY {_TS}, id",
                (start_ts, end_ts),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_last_positive_forecast(self, before_ts):
        """Return the newest prediction with y_pred > 0 created before before_ts."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT id, {_TS} AS ts_created, y_pred FROM forecast_1h "
                f"WHERE {_TS} < {_BOUND} AND y_pred > 0 "
                f"ORDER BY {_TS} DESC, id DESC LIMIT 1",
                (before_ts,),
            ).fetchone()
        return dict(row) if row else None
