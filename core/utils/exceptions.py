# Structured exception hierarchy for the trade partitioning pipeline

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class TradeStreamException(Exception):
    """Base exception for all trade stream specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)


class TransientError(TradeStreamException):
    """Base class for errors that may succeed when the delivery is attempted again"""
    pass


class PermanentError(TradeStreamException):
    """Base class for errors that will fail identically on every redelivery"""
    pass


# Configuration Errors
class InvalidConfigurationError(PermanentError):
    """Configuration that the pipeline refuses to run with"""

    def __init__(self, message: str, config_field: str, config_value: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.config_field = config_field
        self.config_value = config_value


class PartitionCountMismatchError(InvalidConfigurationError):
    """Broker topic layout disagrees with the configured partition count"""

    def __init__(self, message: str, topic: str, configured: int, actual: int, **kwargs):
        super().__init__(message, config_field="partitioning.partition_count",
                         config_value=configured, **kwargs)
        self.topic = topic
        self.configured = configured
        self.actual = actual


# Message Errors
class MessageHeaderError(PermanentError):
    """Base class for routing header problems on a consumed message"""

    def __init__(self, message: str, header: str, stream: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.header = header
        self.stream = stream


class MissingHeaderError(MessageHeaderError):
    """Required routing header absent on a consumed message"""
    pass


class InvalidHeaderError(MessageHeaderError):
    """Routing header present but not usable (e.g. account is not an integer)"""

    def __init__(self, message: str, header: str, value: Any, **kwargs):
        super().__init__(message, header, **kwargs)
        self.value = value


# Streaming Errors
class PublishError(TransientError):
    """Transport rejected an outbound message"""

    def __init__(self, message: str, stream: str, partition: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.stream = stream
        self.partition = partition


class ProcessingError(TransientError):
    """Consumer callback raised an unexpected fault while handling a message"""

    def __init__(self, message: str, stream: str, message_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.stream = stream
        self.message_id = message_id


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if a failed delivery is worth attempting again in place.

    Permanent errors fail the same way on every attempt; anything else
    (transient or unclassified) may succeed later.
    """
    return not isinstance(error, PermanentError)


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging and dead-letter headers

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, TradeStreamException):
        if error.correlation_id:
            context["correlation_id"] = error.correlation_id
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, MessageHeaderError):
            context["header"] = error.header

        if isinstance(error, (PublishError, ProcessingError)):
            context["stream"] = error.stream

    if additional_context:
        context.update(additional_context)

    return context
