"""
Monitoring components for the trade partitioning pipeline
"""

from .prometheus_metrics import PrometheusMetricsCollector

__all__ = [
    "PrometheusMetricsCollector",
]
