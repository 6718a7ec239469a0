"""SQLite access to the telemetry, forecast and event tables."""

from .base import StorageBase, UNKNOWN_CATEGORY
from .flowstats import FlowStatsMixin
from .forecast import ForecastMixin
from .events import EventMixin, REROUTE_EVENT_TYPES
from .cleanup import CleanupMixin

__all__ = [
    "TelemetryStorage",
    "UNKNOWN_CATEGORY",
    "REROUTE_EVENT_TYPES",
]


class TelemetryStorage(
    FlowStatsMixin,
    ForecastMixin,
    EventMixin,
    CleanupMixin,
    StorageBase,
):
    """Read flow telemetry, predictions and controller events from SQLite."""
    pass
