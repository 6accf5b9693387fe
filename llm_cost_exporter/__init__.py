"""LLM Cost Exporter - Publish LLM provider usage and spend as Prometheus metrics."""

__version__ = "0.1.0"
