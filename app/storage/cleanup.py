"""Retention mixin for locally generated (demo) telemetry."""

import logging
import sqlite3

from .base import utc_sql
from ..tz import utc_cutoff

log = logging.getLogger("voipsight.storage")

_RETENTION_COLUMNS = [
    ("flow_stats", "timestamp"),
    ("forecast_1h", "ts_created"),
    ("system_events", "timestamp"),
]


class CleanupMixin:

    def delete_older_than(self, hours):
        """Delete rows older than N hours from all tables. Returns count deleted.

        Only used for data this app writes itself; upstream-owned databases
        manage their own retention.
        """
        if hours <= 0:
            return 0
        cutoff = utc_cutoff(hours=hours)
        deleted = 0
        with sqlite3.connect(self.db_path) as conn:
            for table, column in _RETENTION_COLUMNS:
                deleted += conn.execute(
                    f"DELETE FROM {table} WHERE {utc_sql(column)} < ?", (cutoff,)
                ).rowcount
        if deleted:
            log.info("Retention: deleted %d rows older than %dh", deleted, hours)
        return deleted
