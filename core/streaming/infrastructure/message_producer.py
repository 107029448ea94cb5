from typing import Dict, Any, List, Optional, Set, Tuple
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError
from core.logging import get_logger
from core.config.settings import RedpandaSettings
from core.schemas.messages import StreamMessage
from core.utils.exceptions import PublishError

MESSAGE_ID_HEADER = "message_id"


def encode_headers(message: StreamMessage) -> List[Tuple[str, bytes]]:
    """Kafka headers are bytes; every value travels as its str() form."""
    headers = [(name, str(value).encode("utf-8"))
               for name, value in message.headers.items() if value is not None]
    headers.append((MESSAGE_ID_HEADER, message.id.encode("utf-8")))
    return headers


class MessageProducer:
    """Thin aiokafka producer wrapper publishing StreamMessage envelopes."""

    def __init__(self, config: RedpandaSettings, service_name: str, tuning: Optional[Dict[str, Any]] = None):
        self.config = config
        self.service_name = service_name
        self._producer: Optional[AIOKafkaProducer] = None
        self._running = False
        self._tuning = tuning or {}
        self._logger = get_logger("core.streaming.message_producer", component="streaming")

    async def start(self) -> None:
        """Start the producer."""
        if self._running:
            return

        producer_kwargs = dict(
            bootstrap_servers=self.config.bootstrap_servers,
            client_id=f"{self.config.client_id}-producer-{self.service_name}",
            enable_idempotence=True,
            acks='all',
            request_timeout_ms=self._tuning.get("request_timeout_ms", self.config.request_timeout_ms),
            linger_ms=self._tuning.get("linger_ms", self.config.linger_ms),
            compression_type=self._tuning.get("compression_type", self.config.compression_type),
            retry_backoff_ms=100,
            value_serializer=self._serialize_value,
        )

        self._producer = AIOKafkaProducer(**producer_kwargs)

        await self._producer.start()
        self._running = True

    async def stop(self) -> None:
        """Stop the producer with flush."""
        if not self._running or not self._producer:
            return

        try:
            # Ensure all messages are sent before closing
            await self._producer.flush()
            await self._producer.stop()
        except KafkaError as e:
            self._logger.warning("Error during producer shutdown", error=str(e))
        finally:
            self._producer = None
            self._running = False

    async def send(self, topic: str, message: StreamMessage, partition: Optional[int] = None) -> int:
        """Publish and wait for the broker ack; returns the partition written to.

        With ``partition=None`` the client's default partitioner decides from
        the key (or spreads keyless messages).
        """
        if not self._running:
            await self.start()

        encoded_key = message.key.encode('utf-8') if message.key is not None else None
        try:
            metadata = await self._producer.send_and_wait(
                topic=topic,
                key=encoded_key,
                value=message.body,  # The value_serializer handles encoding
                partition=partition,
                headers=encode_headers(message),
            )
        except KafkaError as send_error:
            error_context = {
                "topic": topic,
                "key": message.key,
                "partition": partition,
                "service": self.service_name,
            }
            raise PublishError(
                f"MessageProducer.send failed: {send_error}. Context: {error_context}",
                stream=topic,
                partition=partition,
                correlation_id=message.id,
            ) from send_error

        return metadata.partition

    async def partitions_for(self, topic: str) -> Set[int]:
        """Partition ids the broker reports for a topic."""
        if not self._running:
            await self.start()
        return await self._producer.partitions_for(topic)

    @staticmethod
    def _serialize_value(x: Any) -> bytes:
        if isinstance(x, bytes):
            return x
        return str(x).encode('utf-8')
