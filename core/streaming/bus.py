"""
Message bus contract shared by the in-memory and Redpanda transports.

Components only ever see ``publish`` and ``subscribe``. Delivery semantics
(partitioned order, per-message ack, retry and dead-lettering) belong to
the transport underneath.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Union

from core.logging import get_logger
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.messages import StreamMessage
from core.utils.exceptions import InvalidConfigurationError
from .error_handling import DeliveryPolicy
from .reliability.reliability_layer import ReliabilityLayer

HandlerResult = Optional[Union[str, StreamMessage]]
MessageHandler = Callable[[StreamMessage], Awaitable[HandlerResult]]
AckFunc = Callable[[StreamMessage], Awaitable[None]]


@dataclass
class Subscription:
    """A handler bound to one stream for one consumer group.

    ``partitions`` pins the subscription to a static set of partitions;
    ``None`` means every partition of the stream. When ``reply_to`` is set a
    non-None handler result is published there before the input is acked.
    """
    stream: str
    handler: MessageHandler
    group_id: str
    partitions: Optional[List[int]] = None
    reply_to: Optional[str] = None
    name: str = field(default="")

    def __post_init__(self):
        if not self.name:
            self.name = getattr(self.handler, "__qualname__", repr(self.handler))


class MessageBus(ABC):
    """Partitioned publish/subscribe transport."""

    def __init__(self, delivery_policy: Optional[DeliveryPolicy] = None,
                 prometheus_metrics: Optional[PrometheusMetricsCollector] = None):
        self.delivery_policy = delivery_policy or DeliveryPolicy()
        self.prometheus_metrics = prometheus_metrics
        self.subscriptions: List[Subscription] = []
        self._layers: List[ReliabilityLayer] = []
        self._running = False
        self.logger = get_logger(f"core.streaming.{type(self).__name__}", component="streaming")

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    def partition_count(self, stream: str) -> int:
        """Number of partitions of ``stream``."""

    @abstractmethod
    async def publish(self, stream: str, message: StreamMessage, partition: Optional[int] = None) -> int:
        """Append ``message`` to ``stream`` and return the partition it landed on."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self, timeout: Optional[float] = None) -> None:
        ...

    def subscribe(self, stream: str, handler: MessageHandler, group_id: str,
                  partitions: Optional[List[int]] = None,
                  reply_to: Optional[str] = None) -> Subscription:
        """Register a handler; subscriptions are fixed once the bus starts."""
        if self._running:
            raise RuntimeError("Subscriptions must be registered before the bus starts")

        if partitions is not None:
            partitions = sorted(set(partitions))
            self._check_overlap(stream, group_id, partitions)

        subscription = Subscription(
            stream=stream,
            handler=handler,
            group_id=group_id,
            partitions=partitions,
            reply_to=reply_to,
        )
        self.subscriptions.append(subscription)
        self.logger.info("Subscription registered", stream=stream, group_id=group_id,
                         partitions=partitions, reply_to=reply_to, handler=subscription.name)
        return subscription

    def _check_overlap(self, stream: str, group_id: str, partitions: List[int]) -> None:
        """Two members of one group must never own the same partition."""
        for existing in self.subscriptions:
            if existing.stream != stream or existing.group_id != group_id:
                continue
            owned = set(existing.partitions) if existing.partitions is not None else None
            if owned is None or owned.intersection(partitions):
                raise InvalidConfigurationError(
                    f"Group '{group_id}' already owns partitions of '{stream}' requested again: {partitions}",
                    config_field="partitions",
                    config_value=partitions,
                )

    def _resolve_partitions(self, subscription: Subscription) -> List[int]:
        count = self.partition_count(subscription.stream)
        if subscription.partitions is None:
            return list(range(count))
        out_of_range = [p for p in subscription.partitions if not 0 <= p < count]
        if out_of_range:
            raise InvalidConfigurationError(
                f"Partitions {out_of_range} do not exist on '{subscription.stream}' ({count} partitions)",
                config_field="partitions",
                config_value=subscription.partitions,
            )
        return list(subscription.partitions)

    def _build_layer(self, subscription: Subscription, ack: AckFunc) -> ReliabilityLayer:
        layer = ReliabilityLayer(
            subscription=subscription,
            publish=self.publish,
            ack=ack,
            policy=self.delivery_policy,
            prometheus_metrics=self.prometheus_metrics,
        )
        self._layers.append(layer)
        return layer

    def _stop_layers(self) -> None:
        for layer in self._layers:
            layer.stop()

    def get_status(self) -> Dict[str, object]:
        return {
            "transport": type(self).__name__,
            "running": self._running,
            "subscriptions": [
                {"stream": s.stream, "group_id": s.group_id, "partitions": s.partitions,
                 "reply_to": s.reply_to, "handler": s.name}
                for s in self.subscriptions
            ],
        }
