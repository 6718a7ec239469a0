"""Flask JSON API for VoIPSight – SDN/VoIP traffic telemetry dashboard."""

import functools
import logging
import os
import sqlite3
import stat
import time
from datetime import timedelta
from importlib import metadata

from flask import Flask, request, jsonify, session
from werkzeug.security import check_password_hash

log = logging.getLogger("voipsight.web")
audit_log = logging.getLogger("voipsight.audit")

# ── Login rate limiting (in-memory) ──
_login_attempts = {}  # IP -> [timestamp, ...]
_LOGIN_MAX_ATTEMPTS = 5
_LOGIN_WINDOW = 900  # 15 min
_LOGIN_LOCKOUT_BASE = 30  # seconds, doubles each excess attempt


def _get_client_ip():
    """Get client IP, respecting X-Forwarded-For behind reverse proxy."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def _check_login_rate_limit(ip):
    """Return seconds until retry allowed, or 0 if not limited."""
    now = time.time()
    attempts = _login_attempts.get(ip, [])
    attempts = [t for t in attempts if now - t < _LOGIN_WINDOW]
    _login_attempts[ip] = attempts
    if len(attempts) >= _LOGIN_MAX_ATTEMPTS:
        excess = len(attempts) - _LOGIN_MAX_ATTEMPTS
        lockout = _LOGIN_LOCKOUT_BASE * (2 ** min(excess, 8))
        remaining = lockout - (now - attempts[-1])
        if remaining > 0:
            return remaining
    return 0


def _record_failed_login(ip):
    """Record a failed login attempt."""
    if ip not in _login_attempts:
        _login_attempts[ip] = []
    _login_attempts[ip].append(time.time())


def _get_version():
    """Return the installed package version, or 'dev' when running from a checkout."""
    try:
        return metadata.version("voipsight")
    except metadata.PackageNotFoundError:
        return "dev"


APP_VERSION = _get_version()

app = Flask(__name__)
app.secret_key = os.urandom(32)  # overwritten by _init_session_key
app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Strict",
    PERMANENT_SESSION_LIFETIME=timedelta(hours=24),
)

_storage = None
_config_manager = None
_collectors = []


def init_storage(storage):
    """Set the telemetry storage instance."""
    global _storage
    _storage = storage


def init_collectors(collectors):
    """Set the list of all collectors for status reporting."""
    global _collectors
    _collectors = collectors


def get_storage():
    return _storage


def get_config_manager():
    return _config_manager


def _init_session_key(data_dir):
    """Load or generate a persistent session secret key."""
    key_path = os.path.join(data_dir, ".session_key")
    if os.path.exists(key_path):
        with open(key_path, "rb") as f:
            app.secret_key = f.read()
    else:
        key = os.urandom(32)
        os.makedirs(data_dir, exist_ok=True)
        with open(key_path, "wb") as f:
            f.write(key)
        try:
            os.chmod(key_path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError:
            pass
        app.secret_key = key


def init_config(config_manager):
    """Set the config manager."""
    global _config_manager
    _config_manager = config_manager
    _init_session_key(config_manager.data_dir)


def _auth_required():
    """Check if auth is enabled and user is not logged in."""
    if not _config_manager or not _config_manager.is_auth_enabled():
        return False
    return not session.get("authenticated")


def require_auth(f):
    """Decorator: reject with 401 if auth is enabled and not logged in."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if _auth_required():
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)
    return decorated


@app.errorhandler(sqlite3.Error)
def handle_storage_error(e):
    """Surface data store failures as a request-level 500; clients retry on next poll."""
    log.exception("Storage error on %s: %s", request.path, e)
    return jsonify({"error": "Storage error"}), 500


@app.route("/login", methods=["POST"])
def login():
    if not _config_manager or not _config_manager.is_auth_enabled():
        return jsonify({"success": True, "auth_enabled": False})
    ip = _get_client_ip()
    wait = _check_login_rate_limit(ip)
    if wait > 0:
        audit_log.warning("Login rate-limited: ip=%s (retry in %ds)", ip, int(wait))
        return jsonify({"error": "Too many attempts. Try again later.", "retry_in": int(wait)}), 429
    data = request.get_json(silent=True) or {}
    pw = data.get("password") or request.form.get("password", "")
    stored = _config_manager.get("admin_password", "")
    if stored.startswith(("scrypt:", "pbkdf2:")):
        success = check_password_hash(stored, pw)
    else:
        success = (pw == stored)
    if success:
        _login_attempts.pop(ip, None)
        session.permanent = True
        session["authenticated"] = True
        audit_log.info("Login successful: ip=%s", ip)
        return jsonify({"success": True})
    _record_failed_login(ip)
    audit_log.warning("Login failed: ip=%s", ip)
    return jsonify({"error": "Invalid password"}), 401


@app.route("/logout", methods=["POST"])
def logout():
    session.pop("authenticated", None)
    return jsonify({"success": True})


@app.route("/health")
def health():
    """Simple health check endpoint."""
    storage_ok = _storage.ping() if _storage else False
    return jsonify({
        "status": "ok" if storage_ok else "degraded",
        "storage": "ok" if storage_ok else "unavailable",
        "version": APP_VERSION,
    })


@app.route("/api/test")
def api_test():
    return jsonify({"message": "API route working"})


@app.route("/api/collectors/status")
@require_auth
def api_collectors_status():
    """Return health status of all collectors."""
    if not _collectors:
        return jsonify([])
    return jsonify([c.get_status() for c in _collectors])


@app.route("/flowstats")
def flowstats_preview():
    """Return the first 50 raw (timestamp, bytes_tx) rows."""
    if not _storage:
        return jsonify([])
    return jsonify(_storage.get_flow_preview(limit=50))


from .blueprints import register_blueprints  # noqa: E402

register_blueprints(app)
