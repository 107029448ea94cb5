import asyncio
from typing import Dict, Set

from core.logging import get_logger
from core.schemas.messages import StreamMessage
from ..reliability.reliability_layer import ReliabilityLayer

logger = get_logger("core.streaming.partition_dispatcher", component="streaming")


class PartitionDispatcher:
    """Fans one consumer's records out to one worker per partition.

    Records of a partition are handled strictly in order by that
    partition's worker, while different partitions proceed concurrently.
    A worker that gives up on a message (layer stopping) stops taking
    new ones, so nothing behind an unacked record is committed.
    """

    def __init__(self, layer: ReliabilityLayer, max_queue_size: int = 100):
        self.layer = layer
        self.max_queue_size = max_queue_size
        self._queues: Dict[int, asyncio.Queue] = {}
        self._workers: Dict[int, asyncio.Task] = {}
        self._busy: Set[int] = set()
        self._closing = False

    async def dispatch(self, message: StreamMessage) -> None:
        if self._closing:
            return
        queue = self._queues.get(message.partition)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.max_queue_size)
            self._queues[message.partition] = queue
            self._workers[message.partition] = asyncio.create_task(
                self._worker(message.partition, queue),
                name=f"{self.layer.subscription.group_id}:{message.stream}[{message.partition}]",
            )
        await queue.put(message)

    async def _worker(self, partition: int, queue: asyncio.Queue) -> None:
        while not self._closing:
            message = await queue.get()
            if self._closing:
                break
            self._busy.add(partition)
            try:
                acked = await self.layer.process_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Commit failures (e.g. partition revoked mid-flight) leave the
                # record for whichever member owns the partition next
                logger.error("Delivery failed outside the handler", partition=partition,
                             offset=message.offset, error=str(e))
                acked = True
            finally:
                self._busy.discard(partition)
                queue.task_done()
            if not acked:
                break

    async def drain(self, timeout: float) -> None:
        """Finish in-flight messages, drop queued ones (they stay uncommitted)."""
        self._closing = True
        self.layer.stop()

        for partition, task in self._workers.items():
            if partition not in self._busy:
                task.cancel()

        tasks = list(self._workers.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Cancelled in-flight deliveries at shutdown", count=len(pending))
            await asyncio.gather(*tasks, return_exceptions=True)

        dropped = sum(q.qsize() for q in self._queues.values())
        if dropped:
            logger.info("Left fetched records uncommitted for redelivery", count=dropped)
        self._workers.clear()
        self._queues.clear()
