"""
In-process partitioned message bus.

Each stream is a list of append-only partition logs. Each consumer group
keeps its own committed offset per partition, and every (subscription,
partition) pair gets a single worker task. That keeps delivery sequential
within a partition and concurrent across partitions, the same contract
the Redpanda transport gives.
"""

import asyncio
import zlib
from typing import Dict, List, Optional, Tuple

from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.messages import StreamMessage
from core.utils.exceptions import PublishError
from .bus import MessageBus, Subscription
from .error_handling import DeliveryPolicy
from .reliability.reliability_layer import ReliabilityLayer


class _PartitionLog:
    def __init__(self):
        self.messages: List[StreamMessage] = []
        self.changed = asyncio.Condition()


class InMemoryMessageBus(MessageBus):
    """Message bus backed by in-process partition logs."""

    def __init__(self, partition_counts: Optional[Dict[str, int]] = None,
                 delivery_policy: Optional[DeliveryPolicy] = None,
                 prometheus_metrics: Optional[PrometheusMetricsCollector] = None,
                 default_partitions: int = 1,
                 shutdown_timeout: float = 5.0):
        super().__init__(delivery_policy, prometheus_metrics)
        self._partition_counts = dict(partition_counts or {})
        self._default_partitions = default_partitions
        self._shutdown_timeout = shutdown_timeout
        self._streams: Dict[str, List[_PartitionLog]] = {}
        # (stream, group_id, partition) -> next offset to deliver
        self._committed: Dict[Tuple[str, str, int], int] = {}
        self._round_robin: Dict[str, int] = {}
        self._workers: List[Tuple[Subscription, int, asyncio.Task]] = []

    def _logs(self, stream: str) -> List[_PartitionLog]:
        logs = self._streams.get(stream)
        if logs is None:
            count = self._partition_counts.get(stream, self._default_partitions)
            logs = [_PartitionLog() for _ in range(count)]
            self._streams[stream] = logs
        return logs

    def partition_count(self, stream: str) -> int:
        return len(self._logs(stream))

    async def publish(self, stream: str, message: StreamMessage, partition: Optional[int] = None) -> int:
        logs = self._logs(stream)
        if partition is None and message.key is not None:
            # Same key, same partition
            partition = zlib.crc32(message.key.encode("utf-8")) % len(logs)
        elif partition is None:
            partition = self._round_robin.get(stream, 0) % len(logs)
            self._round_robin[stream] = partition + 1
        elif not 0 <= partition < len(logs):
            raise PublishError(
                f"Partition {partition} does not exist on '{stream}' ({len(logs)} partitions)",
                stream=stream,
                partition=partition,
                correlation_id=message.id,
            )

        log = logs[partition]
        async with log.changed:
            log.messages.append(message.delivered(stream, partition, len(log.messages)))
            log.changed.notify_all()
        return partition

    def messages(self, stream: str, partition: Optional[int] = None) -> List[StreamMessage]:
        """Snapshot of what has been appended to a stream (all partitions when None)."""
        logs = self._logs(stream)
        if partition is not None:
            return list(logs[partition].messages)
        return [m for log in logs for m in log.messages]

    def committed_offset(self, stream: str, group_id: str, partition: int) -> int:
        return self._committed.get((stream, group_id, partition), 0)

    async def start(self) -> None:
        if self._running:
            return

        assignments = [(sub, self._resolve_partitions(sub)) for sub in self.subscriptions]
        self._running = True
        for subscription, partitions in assignments:
            for partition in partitions:
                layer = self._build_layer(subscription, self._ack_for(subscription))
                task = asyncio.create_task(
                    self._consume(subscription, partition, layer),
                    name=f"{subscription.group_id}:{subscription.stream}[{partition}]",
                )
                self._workers.append((subscription, partition, task))

        self.logger.info("In-memory message bus started", workers=len(self._workers),
                         streams={s: len(logs) for s, logs in self._streams.items()})

    def _ack_for(self, subscription: Subscription):
        async def ack(message: StreamMessage) -> None:
            key = (subscription.stream, subscription.group_id, message.partition)
            self._committed[key] = message.offset + 1
        return ack

    async def _consume(self, subscription: Subscription, partition: int, layer: ReliabilityLayer) -> None:
        log = self._logs(subscription.stream)[partition]
        key = (subscription.stream, subscription.group_id, partition)
        while self._running:
            position = self._committed.get(key, 0)
            async with log.changed:
                await log.changed.wait_for(lambda: not self._running or len(log.messages) > position)
            if not self._running:
                break
            if not await layer.process_message(log.messages[position]):
                break

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop fetching, let in-flight deliveries finish, then cancel stragglers."""
        if not self._running:
            return
        timeout = self._shutdown_timeout if timeout is None else timeout

        self._running = False
        self._stop_layers()
        for logs in self._streams.values():
            for log in logs:
                async with log.changed:
                    log.changed.notify_all()

        tasks = [task for _, _, task in self._workers]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                self.logger.warning("Cancelled deliveries still running at shutdown", count=len(pending))
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._layers.clear()
        self.logger.info("In-memory message bus stopped")

    def lag(self) -> int:
        """Undelivered messages summed over every subscription's partitions."""
        total = 0
        for subscription, partition, _ in self._workers:
            log = self._logs(subscription.stream)[partition]
            total += len(log.messages) - self._committed.get(
                (subscription.stream, subscription.group_id, partition), 0)
        return total

    async def join(self, timeout: float = 5.0, poll_interval: float = 0.005) -> None:
        """Wait until every subscription has acked everything published so far."""
        async def _drained():
            while self.lag() > 0:
                await asyncio.sleep(poll_interval)

        await asyncio.wait_for(_drained(), timeout=timeout)
