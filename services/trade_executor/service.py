# Trade Executor Service - turns trade requests into confirmations
from typing import Optional

from core.config.settings import Settings, ExecutorVariant, ConfirmationOutput
from core.logging import get_service_logger
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.messages import StreamMessage, TradeConfirmation, ACCOUNT_HEADER
from core.schemas.topics import TopicNames, ConsumerGroups
from core.streaming.bus import MessageBus
from core.streaming.partitioning import partitions_for_instance
from .sequence import SequenceCounter


class TradeExecutorService:
    """Consumes its share of the trades partitions and confirms each trade.

    Two variants, one per deployment:

    * header-propagating: the account header is required and echoed in the
      confirmation, which is published to tradeConfirmations or logged.
    * reply-binding: the handler returns the confirmation text and the
      subscription's reply binding publishes it; the account is not carried.

    The handlers never retry or swallow errors; the bus's delivery policy
    owns redelivery and dead-lettering.
    """

    def __init__(self, settings: Settings, message_bus: MessageBus,
                 prometheus_metrics: Optional[PrometheusMetricsCollector] = None,
                 sequence: Optional[SequenceCounter] = None):
        self.settings = settings
        self.message_bus = message_bus
        self.prom_metrics = prometheus_metrics
        self.variant = settings.executor.variant
        self.confirmation_output = settings.executor.confirmation_output
        self.sequence = sequence or SequenceCounter()
        self.logger = get_service_logger("trade_executor", variant=self.variant.value)

        self.partitions = partitions_for_instance(
            settings.partitioning.partition_count,
            settings.executor.instance_index,
            settings.executor.instance_count,
        )

        if self.variant == ExecutorVariant.REPLY_BINDING:
            handler, reply_to = self.handle_trade_reply, TopicNames.TRADE_CONFIRMATIONS
        else:
            handler, reply_to = self.handle_trade, None

        self.subscription = message_bus.subscribe(
            TopicNames.TRADES,
            handler,
            group_id=settings.group_id(ConsumerGroups.TRADE_EXECUTOR),
            partitions=self.partitions,
            reply_to=reply_to,
        )

    async def handle_trade(self, message: StreamMessage) -> None:
        """Header-propagating execution."""
        # Header problems must surface before a sequence number is consumed
        account = message.require_int_header(ACCOUNT_HEADER)
        confirmation = TradeConfirmation(
            sequence_number=self.sequence.next(),
            original_body=message.body,
            account=account,
        )
        text = confirmation.render()

        if self.confirmation_output == ConfirmationOutput.STREAM:
            await self.message_bus.publish(
                TopicNames.TRADE_CONFIRMATIONS,
                StreamMessage(body=text, key=str(account)),
            )
        else:
            self.logger.info(text)

        self._record_executed(message, confirmation)

    async def handle_trade_reply(self, message: StreamMessage) -> str:
        """Reply-binding execution; the returned text is the confirmation."""
        confirmation = TradeConfirmation(
            sequence_number=self.sequence.next(),
            original_body=message.body,
        )
        self._record_executed(message, confirmation)
        return confirmation.render()

    def _record_executed(self, message: StreamMessage, confirmation: TradeConfirmation) -> None:
        if self.prom_metrics:
            self.prom_metrics.record_trade_executed(message.partition, self.variant.value)
        self.logger.debug("Trade executed", sequence=confirmation.sequence_number,
                          partition=message.partition, account=confirmation.account)

    async def start(self):
        """Start the trade executor service"""
        self.logger.info("Trade Executor started", partitions=self.partitions,
                         instance_index=self.settings.executor.instance_index,
                         instance_count=self.settings.executor.instance_count,
                         confirmation_output=self.confirmation_output.value)

    async def stop(self):
        """Stop the trade executor service"""
        self.logger.info("Trade Executor stopped", executed=self.sequence.value)
