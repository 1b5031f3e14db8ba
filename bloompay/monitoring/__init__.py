"""Monitoring package for bloompay."""
from .logging import setup_logging
from .metrics import MetricsCollector, metrics

__all__ = [
    "MetricsCollector",
    "metrics",
    "setup_logging",
]
