"""Shared test fixtures for VoIPSight tests."""

import pytest

from app import web
from app.config import ConfigManager
from app.storage import TelemetryStorage


@pytest.fixture
def storage(tmp_path):
    return TelemetryStorage(str(tmp_path / "telemetry.db"))


@pytest.fixture
def config_mgr(tmp_path, monkeypatch):
    for env_name in ("ADMIN_PASSWORD", "DEMO_MODE", "BUCKET_SECONDS", "COLLECT_INTERVAL", "DB_PATH", "TZ_NAME"):
        monkeypatch.delenv(env_name, raising=False)
    return ConfigManager(str(tmp_path / "data"))


@pytest.fixture
def client(config_mgr, storage):
    web.init_config(config_mgr)
    web.init_storage(storage)
    web.init_collectors([])
    web._login_attempts.clear()
    web.app.config["TESTING"] = True
    with web.app.test_client() as client:
        yield client


def flow(timestamp, category="voip", bytes_tx=0, pkts_tx=0, latency_ms=20.0, **extra):
    """Build one flow_stats row dict."""
    row = {
        "timestamp": timestamp,
        "category": category,
        "bytes_tx": bytes_tx,
        "pkts_tx": pkts_tx,
        "latency_ms": latency_ms,
    }
    row.update(extra)
    return row
