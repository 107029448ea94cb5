# Confirmation Sink Service - logs every confirmation verbatim
from typing import Optional

from core.config.settings import Settings
from core.logging import get_service_logger
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.messages import StreamMessage
from core.schemas.topics import TopicNames, ConsumerGroups
from core.streaming.bus import MessageBus


class ConfirmationSinkService:
    """Terminal consumer of tradeConfirmations: one log record per message."""

    def __init__(self, settings: Settings, message_bus: MessageBus,
                 prometheus_metrics: Optional[PrometheusMetricsCollector] = None):
        self.settings = settings
        self.prom_metrics = prometheus_metrics
        self.logger = get_service_logger("confirmation_sink")
        self.received_count = 0

        self.subscription = message_bus.subscribe(
            TopicNames.TRADE_CONFIRMATIONS,
            self.handle_confirmation,
            group_id=settings.group_id(ConsumerGroups.CONFIRMATION_SINK),
        )

    async def handle_confirmation(self, message: StreamMessage) -> None:
        self.received_count += 1
        if self.prom_metrics:
            self.prom_metrics.record_confirmation_received()
        self.logger.info(message.body)

    async def start(self):
        self.logger.info("Confirmation Sink started")

    async def stop(self):
        self.logger.info("Confirmation Sink stopped", received=self.received_count)
