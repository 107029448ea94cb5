import asyncio
import time
from typing import Callable, Awaitable, Optional, TYPE_CHECKING

from core.logging import get_logger, bind_message_context, clear_message_context
from core.monitoring.prometheus_metrics import PrometheusMetricsCollector
from core.schemas.messages import StreamMessage
from core.utils.exceptions import ProcessingError, TradeStreamException, create_error_context
from ..error_handling import DeliveryPolicy, DLQPublisher, ErrorClassifier, ErrorType

if TYPE_CHECKING:
    from ..bus import Subscription

logger = get_logger("core.streaming.reliability", component="streaming")


class ReliabilityLayer:
    """Wraps one subscription's handler with delivery semantics.

    Per delivered message: invoke the handler, publish its reply (if the
    subscription has ``reply_to``), then ack. Failures are classified;
    transient ones are attempted again with backoff up to the policy's
    limit, poison ones are not. Once a message is given up on it is either
    dead-lettered and acked, or, with dead-lettering disabled, held
    unacked and attempted again until the layer is stopped.
    """

    def __init__(
        self,
        subscription: "Subscription",
        publish: Callable[[str, StreamMessage], Awaitable[int]],
        ack: Callable[[StreamMessage], Awaitable[None]],
        policy: Optional[DeliveryPolicy] = None,
        prometheus_metrics: Optional[PrometheusMetricsCollector] = None,
    ):
        self.subscription = subscription
        self._publish = publish
        self._ack = ack
        self.policy = policy or DeliveryPolicy()
        self.prometheus_metrics = prometheus_metrics
        self.dlq_publisher = DLQPublisher(
            publish,
            service_name=subscription.group_id,
            on_dead_letter=prometheus_metrics.record_dead_letter if prometheus_metrics else None,
        )
        self._stopping = asyncio.Event()
        self.processed_count = 0
        self.failed_count = 0

    def stop(self) -> None:
        """Interrupt backoff waits; the in-flight handler call is not cancelled."""
        self._stopping.set()

    @property
    def is_stopping(self) -> bool:
        return self._stopping.is_set()

    async def process_message(self, message: StreamMessage) -> bool:
        """Deliver one message. Returns True once it has been acked."""
        bind_message_context(
            stream=message.stream,
            partition=message.partition,
            offset=message.offset,
            message_id=message.id,
            group_id=self.subscription.group_id,
        )
        try:
            return await self._deliver(message)
        finally:
            clear_message_context()

    async def _deliver(self, message: StreamMessage) -> bool:
        attempt = 0
        while True:
            attempt += 1
            start_time = time.perf_counter()
            try:
                await self._invoke(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = self._wrap(e, message)
                error_type = ErrorClassifier.classify_error(error)
                self.failed_count += 1
                if self.prometheus_metrics:
                    self.prometheus_metrics.record_delivery_failure(message.stream, type(error).__name__)

                retry = ErrorClassifier.should_retry(error_type) and attempt < self.policy.max_attempts
                logger.warning(
                    "Failed to process message",
                    attempt=attempt,
                    max_attempts=self.policy.max_attempts,
                    classification=error_type.value,
                    will_retry=retry,
                    **create_error_context(error, "process_message"),
                )
                if retry:
                    if not await self._backoff(attempt):
                        return False
                    continue

                if self.policy.dead_letter_enabled:
                    if await self._dead_letter(message, error, attempt):
                        return True
                else:
                    logger.error(
                        "Holding unacknowledged message for redelivery",
                        attempt=attempt,
                        poison=error_type == ErrorType.POISON,
                    )

                if not await self._backoff(attempt):
                    return False
                continue

            await self._ack(message)
            self.processed_count += 1
            duration = time.perf_counter() - start_time
            if self.prometheus_metrics:
                self.prometheus_metrics.record_processing_time(message.stream, duration)
            logger.debug("Message processed successfully", duration_ms=duration * 1000, attempt=attempt)
            return True

    async def _invoke(self, message: StreamMessage) -> None:
        result = await self.subscription.handler(message)
        reply_to = self.subscription.reply_to
        if result is None or not reply_to:
            return
        reply = result if isinstance(result, StreamMessage) else StreamMessage(body=str(result))
        await self._publish(reply_to, reply)

    async def _dead_letter(self, message: StreamMessage, error: Exception, attempts: int) -> bool:
        try:
            await self.dlq_publisher.send_to_dlq(message, error, attempts)
        except TradeStreamException as dlq_error:
            logger.error("Failed to dead-letter message", error=str(dlq_error),
                         original_error=str(error))
            return False
        await self._ack(message)
        return True

    async def _backoff(self, attempt: int) -> bool:
        """Sleep before the next attempt. False when the layer is stopping."""
        if self._stopping.is_set():
            return False
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.policy.get_delay(attempt))
        except asyncio.TimeoutError:
            return True
        return False

    def _wrap(self, error: Exception, message: StreamMessage) -> Exception:
        if isinstance(error, TradeStreamException):
            return error
        wrapped = ProcessingError(
            f"Handler {self.subscription.name} failed: {error}",
            stream=message.stream,
            message_id=message.id,
            correlation_id=message.id,
        )
        wrapped.__cause__ = error
        return wrapped
