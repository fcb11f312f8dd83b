"""Pharos validator exporter: chain participation and consensus-log activity as Prometheus metrics."""

__version__ = "0.1.0"
