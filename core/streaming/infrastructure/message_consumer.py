from datetime import datetime, timezone
from typing import List, AsyncGenerator, Dict, Any, Optional
from aiokafka import AIOKafkaConsumer
from aiokafka.structs import TopicPartition
from core.config.settings import RedpandaSettings
from core.logging import get_logger
from core.schemas.messages import StreamMessage, generate_message_id
from .message_producer import MESSAGE_ID_HEADER

logger = get_logger("core.streaming.message_consumer", component="streaming")


def decode_headers(raw_headers) -> Dict[str, Any]:
    headers: Dict[str, Any] = {}
    for name, value in raw_headers or ():
        headers[name] = value.decode("utf-8") if isinstance(value, bytes) else value
    return headers


class MessageConsumer:
    """Pure message consumption without business logic concerns.

    With ``partitions`` given the consumer is statically assigned those
    partitions of ``topic`` and never rebalances; otherwise it joins
    ``group_id`` and receives whatever the group coordinator hands out.
    Offsets are committed explicitly, one message at a time.
    """

    def __init__(self, config: RedpandaSettings, topic: str, group_id: str,
                 partitions: Optional[List[int]] = None):
        self.config = config
        self.topic = topic
        self.group_id = group_id
        self.partitions = partitions
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._running = False

    async def start(self) -> None:
        """Start the Kafka consumer."""
        if self._running:
            return

        topics = () if self.partitions is not None else (self.topic,)
        self._consumer = AIOKafkaConsumer(
            *topics,
            bootstrap_servers=self.config.bootstrap_servers,
            client_id=f"{self.config.client_id}-consumer",
            group_id=self.group_id,
            auto_offset_reset='earliest',
            enable_auto_commit=False,  # Manual commits only
            session_timeout_ms=30000,
            heartbeat_interval_ms=10000,
            max_poll_records=50,
        )

        await self._consumer.start()
        if self.partitions is not None:
            self._consumer.assign([TopicPartition(self.topic, p) for p in self.partitions])
        self._running = True
        logger.info("Message consumer started", topic=self.topic, group_id=self.group_id,
                    partitions=self.partitions if self.partitions is not None else "group-managed")

    async def stop(self) -> None:
        """Stop the Kafka consumer."""
        if not self._running or not self._consumer:
            return

        await self._consumer.stop()
        self._running = False
        logger.info("Message consumer stopped", topic=self.topic, group_id=self.group_id)

    async def consume(self) -> AsyncGenerator[StreamMessage, None]:
        """Yield delivered messages in partition order."""
        if not self._running:
            await self.start()

        try:
            async for record in self._consumer:
                yield self.to_stream_message(record)
        except Exception as e:
            logger.error("Error in message consumption", topic=self.topic, error=str(e))
            raise

    @staticmethod
    def to_stream_message(record) -> StreamMessage:
        headers = decode_headers(record.headers)
        message_id = headers.pop(MESSAGE_ID_HEADER, None) or generate_message_id()
        value = record.value
        body = value.decode('utf-8') if isinstance(value, bytes) else value
        return StreamMessage(
            id=message_id,
            body=body,
            headers=headers,
            key=record.key.decode('utf-8') if record.key else None,
            ts=datetime.fromtimestamp(record.timestamp / 1000.0, tz=timezone.utc),
            stream=record.topic,
            partition=record.partition,
            offset=record.offset,
        )

    async def commit(self, message: StreamMessage) -> None:
        """Commit the offset following ``message`` on its partition."""
        if not self._consumer:
            raise RuntimeError("Consumer not started")

        tp = TopicPartition(message.stream, message.partition)
        try:
            await self._consumer.commit({tp: message.offset + 1})
        except Exception as e:
            logger.error("Failed to commit offset", topic=message.stream,
                         partition=message.partition, offset=message.offset, error=str(e))
            raise
