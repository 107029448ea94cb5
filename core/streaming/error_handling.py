"""
Error classification, delivery policy and dead-letter publishing.

These are transport-side concerns: the trade components raise and never
retry on their own. The transport adapters decide, per failed delivery,
whether the message is attempted again, dead-lettered or held
unacknowledged.
"""

from enum import Enum
from typing import Dict, Any, Optional, Callable, Awaitable
from dataclasses import dataclass

from core.config.settings import DeliverySettings
from core.logging import get_logger
from core.schemas.messages import StreamMessage
from core.schemas.topics import TopicNames
from core.utils.exceptions import (
    MessageHeaderError, create_error_context, is_retryable_error
)

logger = get_logger("core.streaming.error_handling", component="streaming")

PublishFunc = Callable[[str, StreamMessage], Awaitable[int]]

# Dead-letter headers
HEADER_ORIGINAL_TOPIC = "x-original-topic"
HEADER_ORIGINAL_PARTITION = "x-original-partition"
HEADER_ORIGINAL_OFFSET = "x-original-offset"
HEADER_EXCEPTION_FQCN = "x-exception-fqcn"
HEADER_EXCEPTION_MESSAGE = "x-exception-message"
HEADER_DELIVERY_ATTEMPTS = "x-delivery-attempts"


class ErrorType(Enum):
    """Classification of errors for appropriate handling strategies"""
    TRANSIENT = "transient"          # Transport hiccups, unexpected callback faults
    POISON = "poison"                # Malformed messages, missing routing headers


@dataclass
class DeliveryPolicy:
    """How often and how patiently a failed delivery is attempted again"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    dead_letter_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: DeliverySettings) -> "DeliveryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_ms / 1000.0,
            max_delay=settings.max_backoff_ms / 1000.0,
            exponential_base=settings.backoff_multiplier,
            dead_letter_enabled=settings.dead_letter_enabled,
        )

    def get_delay(self, attempt: int) -> float:
        """Exponential backoff for the given (1-based) failed attempt"""
        return min(self.base_delay * (self.exponential_base ** max(attempt - 1, 0)), self.max_delay)


class ErrorClassifier:
    """Classify errors for appropriate handling strategies"""

    @classmethod
    def classify_error(cls, error: Exception) -> ErrorType:
        # Unclassified faults get the benefit of the doubt
        return ErrorType.TRANSIENT if is_retryable_error(error) else ErrorType.POISON

    @classmethod
    def should_retry(cls, error_type: ErrorType) -> bool:
        """Poison messages fail identically on every attempt"""
        return error_type == ErrorType.TRANSIENT


class DLQPublisher:
    """Publishes exhausted messages to ``<stream>.dlq`` with error headers"""

    def __init__(self, publish: PublishFunc, service_name: str,
                 on_dead_letter: Optional[Callable[[str], None]] = None):
        self._publish = publish
        self.service_name = service_name
        self._on_dead_letter = on_dead_letter
        self._dlq_count = 0

    def build_dead_letter(self, message: StreamMessage, error: Exception, attempts: int) -> StreamMessage:
        headers: Dict[str, Any] = dict(message.headers)
        headers.update({
            HEADER_ORIGINAL_TOPIC: message.stream,
            HEADER_ORIGINAL_PARTITION: message.partition,
            HEADER_ORIGINAL_OFFSET: message.offset,
            HEADER_EXCEPTION_FQCN: f"{type(error).__module__}.{type(error).__qualname__}",
            HEADER_EXCEPTION_MESSAGE: str(error),
            HEADER_DELIVERY_ATTEMPTS: attempts,
        })
        return StreamMessage(id=message.id, body=message.body, headers=headers, key=message.key)

    async def send_to_dlq(self, message: StreamMessage, error: Exception, attempts: int) -> str:
        """Publish the message to its dead-letter stream and return that stream's name"""
        dlq_topic = TopicNames.get_dlq_topic(message.stream)
        await self._publish(dlq_topic, self.build_dead_letter(message, error, attempts))
        self._dlq_count += 1

        context = create_error_context(error, "deliver", {
            "service": self.service_name,
            "dlq_topic": dlq_topic,
            "attempts": attempts,
        })
        if isinstance(error, MessageHeaderError):
            logger.warning("Unprocessable message dead-lettered", **context)
        else:
            logger.error("Message dead-lettered after exhausting delivery attempts", **context)

        if self._on_dead_letter:
            self._on_dead_letter(message.stream)
        return dlq_topic

    def get_dlq_stats(self) -> Dict[str, Any]:
        return {"service": self.service_name, "dead_lettered": self._dlq_count}
