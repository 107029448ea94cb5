"""
Prometheus metrics for the trade partitioning pipeline
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, start_http_server
from typing import Optional, Any
import time

from core.logging import get_logger

logger = get_logger("core.monitoring.prometheus_metrics", component="monitoring")


class PrometheusMetricsCollector:
    """Pipeline metrics registered on a private registry"""

    def __init__(self, registry: Optional[CollectorRegistry] = None, settings: Optional[Any] = None):
        self.registry = registry or CollectorRegistry()
        self.settings = settings
        self._server_started = False

        # Throughput metrics
        self.trades_published = Counter(
            'trades_published_total',
            'Trade requests published by the requestor',
            ['partition'],
            registry=self.registry
        )

        self.trades_executed = Counter(
            'trades_executed_total',
            'Trade requests processed by an executor',
            ['partition', 'variant'],
            registry=self.registry
        )

        self.confirmations_received = Counter(
            'confirmations_received_total',
            'Confirmations observed by the sink',
            registry=self.registry
        )

        # Latency metrics
        self.processing_latency = Histogram(
            'message_processing_latency_seconds',
            'Handler latency per delivered message',
            ['stream'],
            buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
            registry=self.registry
        )

        # Error metrics
        self.delivery_failures = Counter(
            'message_delivery_failures_total',
            'Failed delivery attempts by stream and error type',
            ['stream', 'error_type'],
            registry=self.registry
        )

        # DLQ metrics
        self.dead_lettered = Counter(
            'messages_dead_lettered_total',
            'Messages published to a dead-letter stream',
            ['stream'],
            registry=self.registry
        )

        self.last_activity_timestamp = Gauge(
            'pipeline_last_activity_timestamp_unix',
            'Last activity timestamp (unix seconds) by stage',
            ['stage'],
            registry=self.registry
        )

    def record_trade_published(self, partition: int):
        self.trades_published.labels(partition=str(partition)).inc()
        self.last_activity_timestamp.labels(stage='requestor').set(time.time())

    def record_trade_executed(self, partition: Optional[int], variant: str):
        self.trades_executed.labels(partition=str(partition), variant=variant).inc()
        self.last_activity_timestamp.labels(stage='executor').set(time.time())

    def record_confirmation_received(self):
        self.confirmations_received.inc()
        self.last_activity_timestamp.labels(stage='sink').set(time.time())

    def record_processing_time(self, stream: str, duration_seconds: float):
        """Record processing latency"""
        self.processing_latency.labels(stream=stream).observe(duration_seconds)

    def record_delivery_failure(self, stream: str, error_type: str):
        self.delivery_failures.labels(stream=stream, error_type=error_type).inc()

    def record_dead_letter(self, stream: str):
        self.dead_lettered.labels(stream=stream).inc()

    def start_server(self, port: int) -> bool:
        """Expose the registry over HTTP; a no-op once started."""
        if self._server_started:
            return True
        start_http_server(port, registry=self.registry)
        self._server_started = True
        logger.info("Prometheus metrics server started", port=port)
        return True
