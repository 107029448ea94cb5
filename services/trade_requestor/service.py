# Trade Requestor Service - emits one trade request per tick
import random
import time
from typing import Callable, Optional

from core.config.settings import Settings
from core.logging import get_service_logger
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.messages import TradeRequest
from core.schemas.topics import TopicNames
from core.streaming.bus import MessageBus
from core.streaming.partitioning import PartitionSelector
from core.utils.ticker import PeriodicTicker


def epoch_millis() -> int:
    return int(time.time() * 1000)


class TradeRequestorService:
    """Publishes trade requests on a fixed schedule, routed by account.

    The partition is computed here from the account and passed to the bus
    explicitly, so routing does not depend on the transport's partitioner.
    """

    def __init__(self, settings: Settings, message_bus: MessageBus,
                 prometheus_metrics: Optional[PrometheusMetricsCollector] = None,
                 clock: Callable[[], int] = epoch_millis):
        self.settings = settings
        self.message_bus = message_bus
        self.prom_metrics = prometheus_metrics
        self.logger = get_service_logger("trade_requestor")

        self.selector = PartitionSelector(settings.partitioning.partition_count)
        self.account_range = settings.requestor.account_range
        self._random = random.Random(settings.requestor.seed)
        self._clock = clock
        self.published_count = 0

        self.ticker = PeriodicTicker(
            settings.requestor.interval_ms / 1000.0,
            self.publish_trade,
            name="trade_requestor",
        )

    def next_trade(self) -> TradeRequest:
        return TradeRequest(
            body=f"Trade {self._clock()}",
            account=self._random.randrange(self.account_range),
        )

    async def publish_trade(self, trade: Optional[TradeRequest] = None) -> int:
        """Publish one trade (a fresh one when none is given) and return its partition.

        A PublishError propagates to the caller; on the schedule that is the
        ticker, which logs it and carries on with the next tick.
        """
        trade = trade or self.next_trade()
        partition = self.selector.select(trade.account)
        await self.message_bus.publish(TopicNames.TRADES, trade.to_message(), partition=partition)

        self.published_count += 1
        if self.prom_metrics:
            self.prom_metrics.record_trade_published(partition)
        self.logger.info("Trade published", body=trade.body, account=trade.account, partition=partition)
        return partition

    async def start(self):
        """Start the trade requestor service"""
        self.ticker.start()
        self.logger.info("Trade Requestor started",
                         interval_ms=self.settings.requestor.interval_ms,
                         partition_count=self.selector.partition_count)

    async def stop(self):
        """Stop the trade requestor service"""
        await self.ticker.stop()
        self.logger.info("Trade Requestor stopped", published=self.published_count)
