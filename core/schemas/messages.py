# Message envelope and trade payload models shared by every role

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Literal
from uuid import uuid4

from core.utils.exceptions import MissingHeaderError, InvalidHeaderError


ACCOUNT_HEADER = "account"


def generate_message_id() -> str:
    return str(uuid4())


class StreamMessage(BaseModel):
    """Envelope for everything that travels on a stream.

    ``stream``, ``partition`` and ``offset`` are stamped by the transport on
    delivery; publishers leave them unset.
    """
    id: str = Field(default_factory=generate_message_id, description="Unique message ID")
    body: str = Field(..., description="Opaque payload")
    headers: Dict[str, Any] = Field(default_factory=dict, description="Routing metadata")
    key: Optional[str] = Field(None, description="Partition key, informational once a partition is chosen")
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    stream: Optional[str] = None
    partition: Optional[int] = None
    offset: Optional[int] = None

    def header(self, name: str, default: Any = None) -> Any:
        return self.headers.get(name, default)

    def require_header(self, name: str) -> Any:
        """Return a header value or fail with MissingHeaderError."""
        if name not in self.headers or self.headers[name] is None:
            raise MissingHeaderError(
                f"Required header '{name}' missing on message {self.id}",
                header=name,
                stream=self.stream,
                correlation_id=self.id,
            )
        return self.headers[name]

    def require_int_header(self, name: str) -> int:
        """Return a header coerced to int; transports may deliver it as str or bytes."""
        raw = self.require_header(name)
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        # int() would truncate floats and accept other numerics
        if isinstance(raw, bool) or not isinstance(raw, (int, str)):
            raise InvalidHeaderError(
                f"Header '{name}' must be an integer, got {raw!r}",
                header=name, value=raw, stream=self.stream, correlation_id=self.id,
            )
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise InvalidHeaderError(
                f"Header '{name}' must be an integer, got {raw!r}",
                header=name, value=raw, stream=self.stream, correlation_id=self.id,
            ) from None

    def delivered(self, stream: str, partition: int, offset: int) -> "StreamMessage":
        """Copy stamped with its delivery coordinates."""
        return self.model_copy(update={"stream": stream, "partition": partition, "offset": offset})


class TradeRequest(BaseModel):
    """A trade request; the account is the partition key"""
    model_config = ConfigDict(frozen=True)

    body: str
    account: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> StreamMessage:
        return StreamMessage(
            body=self.body,
            headers={ACCOUNT_HEADER: self.account},
            key=str(self.account),
            ts=self.created_at,
        )


class TradeConfirmation(BaseModel):
    """Confirmation emitted by an executor after processing a trade"""
    model_config = ConfigDict(frozen=True)

    sequence_number: int = Field(..., ge=1)
    original_body: str
    account: Optional[int] = None
    status: Literal["done"] = "done"

    def render(self) -> str:
        return format_confirmation(self.sequence_number, self.original_body, self.account)


def format_confirmation(sequence_number: int, body: str, account: Optional[int] = None) -> str:
    """
    Render the confirmation text.

    "[seq] body (account: n) done" when the account travelled with the trade,
    "[seq] body done" otherwise.
    """
    if account is None:
        return f"[{sequence_number}] {body} done"
    return f"[{sequence_number}] {body} (account: {account}) done"
