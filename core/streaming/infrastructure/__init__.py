"""aiokafka-backed producer and consumer wrappers used by the Redpanda transport."""

from .message_consumer import MessageConsumer
from .message_producer import MessageProducer

__all__ = ['MessageConsumer', 'MessageProducer']
