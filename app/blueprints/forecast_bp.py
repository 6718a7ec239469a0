"""Forecast routes: actual vs. predicted traffic, QoS status, intents."""

import logging

from flask import Blueprint, request, jsonify

from app.web import require_auth, get_storage, get_config_manager
from app.forecast import RANGES, DEFAULT_RANGE, ForecastSettings, build_forecast, parse_range

log = logging.getLogger("voipsight.web")

forecast_bp = Blueprint("forecast_bp", __name__)


def _empty_payload():
    return {
        "data": [],
        "system_events": [],
        "latest_status": None,
        "system_metrics": {"mttd": 0, "mttr": 0, "reroute_count": 0},
        "model_metrics": {"mape": 0, "rmse": 0},
    }


@forecast_bp.route("/api/forecast/data")
@forecast_bp.route("/forecast/data")
@require_auth
def api_forecast_data():
    """Return chart records, recent controller events and summary metrics.

    Query: range = 10s | 1m | 5m | 15m | 30m | 1h
    """
    _config_manager = get_config_manager()
    default = _config_manager.get("default_range") if _config_manager else DEFAULT_RANGE
    range_name = request.args.get("range") or default
    range_seconds = parse_range(range_name)
    if range_seconds is None:
        return jsonify({
            "error": f"Invalid range '{range_name}'",
            "allowed": list(RANGES),
        }), 400

    _storage = get_storage()
    if not _storage:
        return jsonify(_empty_payload())

    settings = ForecastSettings.from_config(_config_manager) if _config_manager else ForecastSettings()
    return jsonify(build_forecast(_storage, range_seconds, settings))


@forecast_bp.route("/api/forecast/generate-intent", methods=["POST"])
@require_auth
def api_generate_intent():
    """Placeholder intent trigger; acknowledges without side effects."""
    log.info("Intent requested from %s", request.remote_addr)
    return jsonify({"message": "Intent Simulated", "count": 1})


@forecast_bp.route("/forecast/intent", methods=["POST"])
def forecast_intent():
    """Unauthenticated alias of the placeholder intent trigger."""
    log.info("Intent requested from %s", request.remote_addr)
    return jsonify({"message": "Intent Simulated", "count": 1})
