"""Metric registry and the counters exported on ``/metrics``."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
