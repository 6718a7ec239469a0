"""Collector registry and discovery.

Real deployments read tables filled by external processes, so the only
built-in collector is the demo data generator.
"""

import logging

from .base import Collector, CollectorResult
from .demo import DemoCollector

log = logging.getLogger("voipsight.collectors")

COLLECTOR_REGISTRY = {
    "demo": DemoCollector,
}


def discover_collectors(config_mgr, storage):
    """Instantiate the collectors enabled by the current config.

    Returns:
        List of Collector objects ready to poll (may be empty).
    """
    collectors = []
    if config_mgr.is_demo_mode():
        log.info("Demo mode active, using DemoCollector")
        collectors.append(DemoCollector(
            storage=storage,
            poll_interval=config_mgr.get_collect_interval(),
            thresholds=config_mgr.get_thresholds(),
        ))
    return collectors


__all__ = [
    "Collector",
    "CollectorResult",
    "COLLECTOR_REGISTRY",
    "DemoCollector",
    "discover_collectors",
]
