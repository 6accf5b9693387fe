"""
Prometheus exposition endpoint.

Serves the registry snapshot in the text exposition format from a
background HTTP server thread.
"""

from prometheus_client import generate_latest, start_http_server

from llm_cost_exporter.config.logger import get_logger

from .registry import MetricsRegistry

LOGGER = get_logger("llm_cost_exporter.exposition")


def start_exposition_server(registry: MetricsRegistry, host: str = "0.0.0.0", port: int = 8000):
    """Start serving ``registry`` on ``http://host:port/metrics``.

    Returns whatever prometheus_client returns (the server and its thread).
    """
    server = start_http_server(port, addr=host, registry=registry.collector_registry)
    LOGGER.info("Metrics endpoint listening", extra={"host": host, "port": port})
    return server


def render_latest(registry: MetricsRegistry) -> str:
    """Render the current snapshot as exposition text."""
    return generate_latest(registry.collector_registry).decode("utf-8")
