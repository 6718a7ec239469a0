"""Storage base class with schema init and connection helpers."""

import logging
import os
import sqlite3

log = logging.getLogger("voipsight.storage")

# Category label the collector assigns to unclassified flows
UNKNOWN_CATEGORY = "unknown"


def utc_sql(expr):
    """SQL expression normalising a stored timestamp to 'YYYY-MM-DDTHH:MM:SSZ'.

    Upstream writers may use 'YYYY-MM-DD HH:MM:SS', a T separator, a Z
    suffix or fractional seconds; these do not sort together as plain text.
    Unparseable values become NULL and drop out of every window.
    """
    return f"strftime('%Y-%m-%dT%H:%M:%SZ', {expr})"


class StorageBase:
    """Read telemetry, forecasts and controller events from SQLite.

    The tables are owned by the upstream collector, forecaster and
    closed-loop controller. Creating them here only makes a fresh
    database (demo mode, tests) usable; existing tables are left alone.
    """

    def __init__(self, db_path):
        self.db_path = db_path
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS flow_stats (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    dpid TEXT,
                    src_ip TEXT,
                    dst_ip TEXT,
                    bytes_tx INTEGER NOT NULL DEFAULT 0,
                    bytes_rx INTEGER,
                    pkts_tx INTEGER NOT NULL DEFAULT 0,
                    pkts_rx INTEGER,
                    latency_ms REAL,
                    category TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_flow_stats_ts
                ON flow_stats(timestamp)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS forecast_1h (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts_created TEXT NOT NULL,
                    y_pred REAL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_forecast_ts
                ON forecast_1h(ts_created)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS system_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    description TEXT,
                    trigger_value REAL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_system_events_ts
                ON system_events(timestamp)
            """)

            # Migration: older collectors wrote tx counters only
            cols = [r[1] for r in conn.execute("PRAGMA table_info(flow_stats)").fetchall()]
            for col in ("bytes_rx", "pkts_rx"):
                if col not in cols:
                    conn.execute(f"ALTER TABLE flow_stats ADD COLUMN {col} INTEGER")
                    log.info("Migration: added %s column to flow_stats", col)

    def _connect(self):
        """Return a connection that yields rows as sqlite3.Row."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def ping(self):
        """True if the database answers a trivial query."""
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            log.warning("Storage ping failed: %s", e)
            return False
