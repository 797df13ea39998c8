"""Prometheus exporter for DSMR 5 smart meters."""

__version__ = "0.1.0"
