"""
Core modules for the LLM cost exporter.

This package contains usage normalization, pricing, the metrics
registry and the polling scheduler.
"""
