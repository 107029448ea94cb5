# DI container - one provider per role service, transport chosen by settings
from typing import List

from dependency_injector import containers, providers
from prometheus_client import CollectorRegistry

from core.config.settings import Settings
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.topics import TopicConfig, TopicNames
from core.streaming.error_handling import DeliveryPolicy
from core.streaming.memory_bus import InMemoryMessageBus
from core.streaming.redpanda_bus import RedpandaMessageBus
from services.trade_requestor.service import TradeRequestorService
from services.trade_executor.service import TradeExecutorService
from services.confirmation_sink.service import ConfirmationSinkService


def _transport_name(settings: Settings) -> str:
    return settings.transport.value


def _verified_topics(settings: Settings) -> List[str]:
    """Topics whose broker partition count must match configuration at startup"""
    return [TopicNames.TRADES] if settings.partitioning.verify_topic_layout else []


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # --- Observability: Prometheus ---
    prometheus_registry = providers.Singleton(CollectorRegistry)
    prometheus_metrics = providers.Singleton(
        PrometheusMetricsCollector,
        registry=prometheus_registry,
        settings=settings,
    )

    # --- Transport ---
    partition_counts = providers.Callable(TopicConfig.partition_counts, settings)
    delivery_policy = providers.Callable(DeliveryPolicy.from_settings, settings.provided.delivery)

    message_bus = providers.Selector(
        providers.Callable(_transport_name, settings),
        memory=providers.Singleton(
            InMemoryMessageBus,
            partition_counts=partition_counts,
            delivery_policy=delivery_policy,
            prometheus_metrics=prometheus_metrics,
            shutdown_timeout=settings.provided.shutdown_timeout_seconds,
        ),
        redpanda=providers.Singleton(
            RedpandaMessageBus,
            config=settings.provided.redpanda,
            partition_counts=partition_counts,
            delivery_policy=delivery_policy,
            prometheus_metrics=prometheus_metrics,
            verify_topics=providers.Callable(_verified_topics, settings),
            shutdown_timeout=settings.provided.shutdown_timeout_seconds,
        ),
    )

    # --- Role services ---
    # Constructing a consumer service binds its subscription, so these are
    # only resolved for the roles a process hosts, before the bus starts.
    trade_requestor_service = providers.Singleton(
        TradeRequestorService,
        settings=settings,
        message_bus=message_bus,
        prometheus_metrics=prometheus_metrics,
    )

    trade_executor_service = providers.Singleton(
        TradeExecutorService,
        settings=settings,
        message_bus=message_bus,
        prometheus_metrics=prometheus_metrics,
    )

    confirmation_sink_service = providers.Singleton(
        ConfirmationSinkService,
        settings=settings,
        message_bus=message_bus,
        prometheus_metrics=prometheus_metrics,
    )
