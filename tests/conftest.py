"""
Pytest configuration and shared fixtures for the trade partitioning tests.
"""
import pytest
from prometheus_client import CollectorRegistry

from core.config.settings import (
    Settings,
    RedpandaSettings,
    PartitioningSettings,
    RequestorSettings,
    DeliverySettings,
    MonitoringSettings,
)
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.topics import TopicConfig
from core.streaming.error_handling import DeliveryPolicy
from core.streaming.memory_bus import InMemoryMessageBus


@pytest.fixture
def test_settings():
    """Test settings configuration."""
    return Settings(
        environment="testing",
        transport="memory",
        redpanda=RedpandaSettings(
            bootstrap_servers="localhost:9092",
            group_id_prefix="test-trade-partitioning"
        ),
        partitioning=PartitioningSettings(partition_count=2),
        requestor=RequestorSettings(interval_ms=20, account_range=10, seed=7),
        delivery=DeliverySettings(max_attempts=3, backoff_ms=1, max_backoff_ms=5),
        monitoring=MonitoringSettings(metrics_enabled=False),
    )


@pytest.fixture
def prometheus_metrics():
    """Metrics collector on an isolated registry."""
    return PrometheusMetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def memory_bus(test_settings, prometheus_metrics):
    """In-memory bus laid out like the configured topics; tests start and stop it."""
    return InMemoryMessageBus(
        partition_counts=TopicConfig.partition_counts(test_settings),
        delivery_policy=DeliveryPolicy.from_settings(test_settings.delivery),
        prometheus_metrics=prometheus_metrics,
        shutdown_timeout=1.0,
    )
