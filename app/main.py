"""Main entrypoint: optional demo collector loop + Flask web server."""

import logging
import os
import threading
import time

from . import web
from .config import ConfigManager
from .storage import TelemetryStorage
from .tz import guess_iana_timezone

from .collectors import discover_collectors

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("voipsight.main")


def run_web(port):
    """Run production web server in a separate thread."""
    from waitress import serve
    serve(web.app, host="0.0.0.0", port=port, threads=4, _quiet=True)


def polling_loop(collectors, stop_event):
    """Flat orchestrator: tick every second, let each collector decide when to poll."""
    while not stop_event.is_set():
        for collector in collectors:
            if stop_event.is_set():
                break
            if not collector.is_enabled() or not collector.should_poll():
                continue
            try:
                result = collector.collect()
                if result.success:
                    collector.record_success()
                else:
                    collector.record_failure()
                    log.warning("%s: %s", collector.name, result.error)
            except Exception as e:
                collector.record_failure()
                log.error("%s error: %s", collector.name, e)

        stop_event.wait(1)
    log.info("Polling loop stopped")


def main():
    data_dir = os.environ.get("DATA_DIR", "/data")
    config_mgr = ConfigManager(data_dir)

    log.info("VoIPSight starting")

    db_path = config_mgr.get_db_path()
    storage = TelemetryStorage(db_path)
    log.info("Telemetry database: %s", db_path)
    web.init_storage(storage)
    web.init_config(config_mgr)

    tz_name = config_mgr.get("timezone") or guess_iana_timezone()
    log.info("Display timezone: %s", tz_name or "UTC")
    if tz_name and not config_mgr.get("timezone"):
        config_mgr.save({"timezone": tz_name})

    log.info(
        "Bucket width: %ds, collect interval: %ds, thresholds: %s",
        config_mgr.get_bucket_seconds(), config_mgr.get_collect_interval(),
        config_mgr.get_thresholds(),
    )

    collectors = discover_collectors(config_mgr, storage)
    web.init_collectors(collectors)

    poll_stop = threading.Event()
    if collectors:
        threading.Thread(
            target=polling_loop, args=(collectors, poll_stop), daemon=True
        ).start()
        log.info(
            "Collectors: %s",
            ", ".join(f"{c.name} ({c.poll_interval_seconds}s)" for c in collectors),
        )
    else:
        log.info("No collectors enabled, serving upstream data from %s", db_path)

    web_port = config_mgr.get("web_port", 8765)
    web_thread = threading.Thread(target=run_web, args=(web_port,), daemon=True)
    web_thread.start()
    log.info("Web API started on port %d", web_port)

    # Keep main thread alive
    try:
        while True:
            time.sleep(60)
    except KeyboardInterrupt:
        log.info("Shutting down")
        poll_stop.set()


if __name__ == "__main__":
    main()
