"""
Redpanda (Kafka API) message bus.

One aiokafka consumer per subscription, records fanned out to one worker
per partition, and offsets committed per message after the handler (and
its reply publish) succeeded.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

from aiokafka.errors import KafkaError

from core.config.settings import RedpandaSettings
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.messages import StreamMessage
from core.utils.exceptions import InvalidConfigurationError, PartitionCountMismatchError
from .bus import MessageBus, Subscription
from .error_handling import DeliveryPolicy
from .infrastructure.message_consumer import MessageConsumer
from .infrastructure.message_producer import MessageProducer
from .orchestration.partition_dispatcher import PartitionDispatcher


class RedpandaMessageBus(MessageBus):
    """Message bus on a Redpanda/Kafka cluster."""

    def __init__(self, config: RedpandaSettings,
                 partition_counts: Dict[str, int],
                 delivery_policy: Optional[DeliveryPolicy] = None,
                 prometheus_metrics: Optional[PrometheusMetricsCollector] = None,
                 verify_topics: Iterable[str] = (),
                 service_name: str = "trade-partitioning",
                 shutdown_timeout: float = 5.0):
        super().__init__(delivery_policy, prometheus_metrics)
        self.config = config
        self._partition_counts = dict(partition_counts)
        self._verify_topics = list(verify_topics)
        self._shutdown_timeout = shutdown_timeout
        self.producer = MessageProducer(config, service_name)
        self._flows: List[Tuple[Subscription, MessageConsumer, PartitionDispatcher]] = []
        self._consumption_tasks: List[asyncio.Task] = []

    def partition_count(self, stream: str) -> int:
        return self._partition_counts.get(stream, 1)

    async def publish(self, stream: str, message: StreamMessage, partition: Optional[int] = None) -> int:
        return await self.producer.send(stream, message, partition)

    async def verify_partition_layout(self) -> None:
        """Fail fast when the broker's partition counts differ from configuration."""
        for topic in self._verify_topics:
            configured = self.partition_count(topic)
            try:
                actual = len(await self.producer.partitions_for(topic))
            except KafkaError as e:
                raise InvalidConfigurationError(
                    f"Could not read partition layout of '{topic}': {e}. Run the bootstrap command first.",
                    config_field="partitioning.partition_count",
                    config_value=configured,
                ) from e
            if actual != configured:
                raise PartitionCountMismatchError(
                    f"Topic '{topic}' has {actual} partitions but {configured} are configured",
                    topic=topic,
                    configured=configured,
                    actual=actual,
                )
            self.logger.info("Topic partition layout verified", topic=topic, partitions=actual)

    async def start(self) -> None:
        if self._running:
            return

        await self.producer.start()
        try:
            await self.verify_partition_layout()
            for subscription in self.subscriptions:
                partitions = (self._resolve_partitions(subscription)
                              if subscription.partitions is not None else None)
                consumer = MessageConsumer(self.config, subscription.stream,
                                           subscription.group_id, partitions=partitions)
                await consumer.start()
                layer = self._build_layer(subscription, consumer.commit)
                self._flows.append((subscription, consumer, PartitionDispatcher(layer)))
        except Exception:
            await self._close_clients()
            raise

        self._consumption_tasks = [
            asyncio.create_task(self._consumption_loop(subscription, consumer, dispatcher))
            for subscription, consumer, dispatcher in self._flows
        ]
        self._running = True
        self.logger.info("Redpanda message bus started", subscriptions=len(self._flows),
                         bootstrap_servers=self.config.bootstrap_servers)

    async def _consumption_loop(self, subscription: Subscription, consumer: MessageConsumer,
                                dispatcher: PartitionDispatcher) -> None:
        try:
            async for message in consumer.consume():
                await dispatcher.dispatch(message)
        except asyncio.CancelledError:
            self.logger.info("Consumption loop cancelled", stream=subscription.stream,
                             group_id=subscription.group_id)
            raise
        except Exception as e:
            self.logger.error("Fatal error in consumption loop", stream=subscription.stream,
                              group_id=subscription.group_id, error=str(e))
            raise

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop fetching, let in-flight deliveries finish, then close clients."""
        if not self._running:
            return
        timeout = self._shutdown_timeout if timeout is None else timeout
        self._running = False
        self._stop_layers()

        for task in self._consumption_tasks:
            task.cancel()
        if self._consumption_tasks:
            await asyncio.gather(*self._consumption_tasks, return_exceptions=True)
        self._consumption_tasks = []

        for _, _, dispatcher in self._flows:
            await dispatcher.drain(timeout)

        await self._close_clients()
        self.logger.info("Redpanda message bus stopped")

    async def _close_clients(self) -> None:
        for _, consumer, _ in self._flows:
            try:
                await consumer.stop()
            except KafkaError as e:
                self.logger.warning("Error stopping consumer", stream=consumer.topic, error=str(e))
        self._flows.clear()
        self._layers.clear()
        await self.producer.stop()
