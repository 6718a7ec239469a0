"""Live KPI routes: per-category flow statistics and filter options."""

import logging

from flask import Blueprint, jsonify

from app.web import require_auth, get_storage, get_config_manager
from app.kpi import build_category_stats

log = logging.getLogger("voipsight.web")

kpi_bp = Blueprint("kpi_bp", __name__)


@kpi_bp.route("/api/kpi/stats-by-category")
@require_auth
def api_stats_by_category():
    """Return throughput, pps, latency, jitter and flow count per category.

    A category with no data at the newest timestamp is returned with all
    metric fields null instead of zeros.
    """
    _storage = get_storage()
    if not _storage:
        return jsonify([])
    _config_manager = get_config_manager()
    interval = _config_manager.get_collect_interval() if _config_manager else 5
    return jsonify(build_category_stats(_storage, collect_interval=interval))


@kpi_bp.route("/api/filter-options")
@require_auth
def api_filter_options():
    """Return distinct known traffic categories."""
    _storage = get_storage()
    if not _storage:
        return jsonify({"categories": []})
    return jsonify({"categories": _storage.get_categories()})
