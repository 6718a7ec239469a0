"""Configuration management with persistent config.json + env var overrides."""

import json
import logging
import os

from werkzeug.security import generate_password_hash

log = logging.getLogger("voipsight.config")

BUCKET_MIN = 1
BUCKET_MAX = 60
COLLECT_INTERVAL_MIN = 1

DEFAULTS = {
    "db_path": "",
    "web_port": 8765,
    "collect_interval": 5,
    "bucket_seconds": 5,
    "mbps_divisor": 1000000.0,
    "warning_mbps": 900.0,
    "critical_mbps": 1100.0,
    "max_delay_ms": 150.0,
    "max_jitter_ms": 30.0,
    "max_loss_pct": 1.0,
    "event_window_minutes": 60,
    "default_range": "5m",
    "timezone": "",
    "admin_password": "",
    "demo_mode": False,
}

ENV_MAP = {
    "db_path": "DB_PATH",
    "web_port": "WEB_PORT",
    "collect_interval": "COLLECT_INTERVAL",
    "bucket_seconds": "BUCKET_SECONDS",
    "mbps_divisor": "MBPS_DIVISOR",
    "warning_mbps": "WARNING_MBPS",
    "critical_mbps": "CRITICAL_MBPS",
    "max_delay_ms": "MAX_DELAY_MS",
    "max_jitter_ms": "MAX_JITTER_MS",
    "max_loss_pct": "MAX_LOSS_PCT",
    "event_window_minutes": "EVENT_WINDOW_MINUTES",
    "default_range": "DEFAULT_RANGE",
    "timezone": "TZ_NAME",
    "admin_password": "ADMIN_PASSWORD",
    "demo_mode": "DEMO_MODE",
}

INT_KEYS = {"web_port", "collect_interval", "bucket_seconds", "event_window_minutes"}
FLOAT_KEYS = {
    "mbps_divisor", "warning_mbps", "critical_mbps",
    "max_delay_ms", "max_jitter_ms", "max_loss_pct",
}
BOOL_KEYS = {"demo_mode"}
HASH_KEYS = {"admin_password"}

THRESHOLD_KEYS = (
    "warning_mbps", "critical_mbps", "max_delay_ms", "max_jitter_ms", "max_loss_pct",
)


def _coerce(key, val):
    """Cast a raw config value to the type expected for key."""
    if key in BOOL_KEYS:
        if isinstance(val, bool):
            return val
        return str(val).strip().lower() in ("1", "true", "yes", "on")
    if key in INT_KEYS:
        return int(val)
    if key in FLOAT_KEYS:
        return float(val)
    return val


class ConfigManager:
    """Loads config from config.json, env vars override file values."""

    def __init__(self, data_dir="/data"):
        self.data_dir = data_dir
        self.config_path = os.path.join(data_dir, "config.json")
        self._file_config = {}
        self._load()

    def _load(self):
        """Load config.json if it exists."""
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r") as f:
                    self._file_config = json.load(f)
                log.info("Loaded config from %s", self.config_path)
            except Exception as e:
                log.warning("Failed to load config.json: %s", e)
                self._file_config = {}
        else:
            log.info("No config.json found, using defaults/env")

    def get(self, key, default=None):
        """Get config value: env var > config.json > default."""
        env_name = ENV_MAP.get(key)
        if env_name:
            env_val = os.environ.get(env_name)
            if env_val is not None and env_val != "":
                try:
                    return _coerce(key, env_val)
                except (ValueError, TypeError):
                    log.warning("Ignoring invalid %s=%r", env_name, env_val)

        if key in self._file_config:
            val = self._file_config[key]
            try:
                return _coerce(key, val)
            except (ValueError, TypeError):
                log.warning("Ignoring invalid config value %s=%r", key, val)

        if default is not None:
            return default
        return DEFAULTS.get(key)

    def save(self, data):
        """Save config values to config.json."""
        os.makedirs(self.data_dir, exist_ok=True)
        for key in HASH_KEYS:
            val = data.get(key)
            if val and not str(val).startswith(("scrypt:", "pbkdf2:")):
                data = dict(data, **{key: generate_password_hash(val)})
        self._file_config.update(data)
        for key in INT_KEYS | FLOAT_KEYS | BOOL_KEYS:
            if key in self._file_config:
                try:
                    self._file_config[key] = _coerce(key, self._file_config[key])
                except (ValueError, TypeError):
                    pass
        with open(self.config_path, "w") as f:
            json.dump(self._file_config, f, indent=2)
        log.info("Config saved to %s", self.config_path)

    def get_db_path(self):
        """Return the telemetry database path (defaults to <data_dir>/telemetry.db)."""
        return self.get("db_path") or os.path.join(self.data_dir, "telemetry.db")

    def get_bucket_seconds(self):
        """Return the chart bucket width, clamped to 1..60 seconds."""
        width = self.get("bucket_seconds", 5)
        return max(BUCKET_MIN, min(BUCKET_MAX, width))

    def get_collect_interval(self):
        """Return the nominal sample interval in seconds, at least 1."""
        return max(COLLECT_INTERVAL_MIN, self.get("collect_interval", 5))

    def get_thresholds(self):
        """Return status classification thresholds as a dict."""
        return {key: self.get(key) for key in THRESHOLD_KEYS}

    def is_demo_mode(self):
        return bool(self.get("demo_mode"))

    def is_auth_enabled(self):
        """True if admin_password is set (from env or config.json)."""
        return bool(self.get("admin_password"))

    def get_all(self):
        """Return all config values as dict (secrets masked)."""
        result = {}
        for key in DEFAULTS:
            result[key] = self.get(key)
        for key in HASH_KEYS:
            if result.get(key):
                result[key] = "********"
        result["db_path"] = self.get_db_path()
        result["data_dir"] = os.environ.get("DATA_DIR", self.data_dir)
        return result
