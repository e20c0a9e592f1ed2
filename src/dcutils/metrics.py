"""
Prometheus metric helpers.

Metric objects are module globals in the engine modules, and test runners
may import those modules more than once; ``get_or_create_metric`` hands
back the already registered collector instead of failing on the
duplicate. ``MetricsPublisher`` serves ``/metrics`` for the length of a
``dcompare run``.
"""

import logging
from typing import Callable, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry, start_http_server

logger = logging.getLogger(__name__)

M = TypeVar("M")


def get_or_create_metric(
    metric_factory: Callable[[], M],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> M:
    """
    Build a metric with ``metric_factory`` unless ``metric_name`` is taken.

    Raises:
        ValueError: The factory failed for a reason other than a duplicate
    """
    existing = registry._names_to_collectors.get(metric_name)
    if existing is not None:
        return existing
    return metric_factory()


class MetricsPublisher:
    """HTTP endpoint for scraping the engine's metrics."""

    def __init__(
        self,
        port: int = 9091,
        addr: str = "0.0.0.0",
        registry: CollectorRegistry | None = None,
    ):
        self.port = port
        self.addr = addr
        self.registry = registry or REGISTRY
        self.is_running = False

    def start(self) -> None:
        """Serve ``/metrics``; a second call is ignored. Bind errors propagate."""
        if self.is_running:
            logger.debug(f"Metrics endpoint already serving on :{self.port}")
            return

        start_http_server(self.port, addr=self.addr, registry=self.registry)
        self.is_running = True
        logger.info(f"Serving metrics on http://{self.addr}:{self.port}/metrics")
