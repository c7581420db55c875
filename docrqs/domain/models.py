"""
Domain models for docrqs — backed by Pydantic v2.

Pydantic handles:
  - conversion between the wire representation (integer epoch milliseconds)
    and Python datetime / timedelta values
  - field validation and type coercion

All models are frozen (immutable). Mutations return new instances via
model_copy(update=...), following a functional-update style.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)


def to_millis(ts: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return (ts - EPOCH) // _ONE_MS


def from_millis(ms: int) -> datetime:
    """Convert integer epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=ms)


def utcnow() -> datetime:
    """Current UTC time truncated to the millisecond resolution of the wire format."""
    return from_millis(to_millis(datetime.now(UTC)))


def _timestamp_from_wire(v: object) -> object:
    match v:
        case bool():
            raise ValueError("timestamp must be epoch milliseconds or a datetime")
        case int() | float():
            return from_millis(int(v))
        case _:
            return v


def _duration_from_wire(v: object) -> object:
    match v:
        case bool():
            raise ValueError("duration must be milliseconds or a timedelta")
        case int() | float():
            return timedelta(milliseconds=int(v))
        case _:
            return v


class Lock(BaseModel):
    """
    Ownership record attached to a message while a consumer holds it.

    locked_by          — owner identifier of the receiving process
    locked_at          — UTC time the lock was acquired
    visibility_timeout — how long the message is meant to stay hidden
    """

    model_config = ConfigDict(frozen=True)

    locked_by: str
    locked_at: datetime = Field(default_factory=utcnow)
    visibility_timeout: timedelta

    @field_validator("locked_at", mode="before")
    @classmethod
    def _decode_locked_at(cls, v: object) -> object:
        return _timestamp_from_wire(v)

    @field_validator("visibility_timeout", mode="before")
    @classmethod
    def _decode_visibility_timeout(cls, v: object) -> object:
        return _duration_from_wire(v)

    @field_serializer("locked_at")
    def _encode_locked_at(self, v: datetime) -> int:
        return to_millis(v)

    @field_serializer("visibility_timeout")
    def _encode_visibility_timeout(self, v: timedelta) -> int:
        return v // _ONE_MS

    @property
    def visible_after(self) -> datetime:
        """When the lock is meant to lapse. Informational only; nothing enforces it."""
        return self.locked_at + self.visibility_timeout

    def extended_by(self, extension: timedelta) -> Lock:
        """Return a new Lock whose visibility timeout is longer by `extension`."""
        return self.model_copy(
            update={"visibility_timeout": self.visibility_timeout + extension}
        )


class MessageBody(BaseModel):
    """
    The JSON fields of a message document, as stored.

    A pending message has no lock; the "lock" key is then omitted from the
    stored document entirely, which is what the pending index keys on.
    """

    model_config = ConfigDict(frozen=True)

    sent_at: datetime
    lock: Lock | None = None

    @field_validator("sent_at", mode="before")
    @classmethod
    def _decode_sent_at(cls, v: object) -> object:
        return _timestamp_from_wire(v)

    @field_serializer("sent_at")
    def _encode_sent_at(self, v: datetime) -> int:
        return to_millis(v)


class Message(BaseModel):
    """
    A queue entry as seen by a consumer.

    id      — stable identifier, assigned at send time
    rev     — store revision; doubles as the receipt token
    sent_at — UTC timestamp set at send time
    lock    — current lock record, None while pending
    data    — opaque payload, fetched separately from the document
    """

    model_config = ConfigDict(frozen=True)

    id: str
    rev: str
    sent_at: datetime
    lock: Lock | None = None
    data: bytes | None = None

    @property
    def message_id(self) -> str:
        return self.id

    @property
    def receipt_token(self) -> str:
        return self.rev

    @property
    def visibility_timeout(self) -> timedelta:
        """The lock's visibility timeout, or zero when the message is not locked."""
        if self.lock is None:
            return timedelta(0)
        return self.lock.visibility_timeout

    def with_data(self, data: bytes) -> Message:
        """Return a new Message carrying the given payload."""
        return self.model_copy(update={"data": data})

    def with_rev(self, rev: str) -> Message:
        """Return a new Message with an updated revision."""
        return self.model_copy(update={"rev": rev})

    def with_lock(self, lock: Lock | None) -> Message:
        """Return a new Message with the lock replaced (or removed)."""
        return self.model_copy(update={"lock": lock})


class MessageStatus(str, Enum):
    """Lifecycle states of a message, as observed from the store."""

    PENDING = "pending"
    LOCKED = "locked"
    MISSING = "missing"


class MessageStatusInfo(BaseModel):
    """
    Result of a status lookup.

    PENDING carries sent_at; LOCKED carries the lock owner, lock time and
    visibility timeout; MISSING carries nothing.
    """

    model_config = ConfigDict(frozen=True)

    status: MessageStatus
    sent_at: datetime | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None
    visibility_timeout: timedelta | None = None

    @classmethod
    def missing(cls) -> MessageStatusInfo:
        return cls(status=MessageStatus.MISSING)

    @classmethod
    def pending(cls, sent_at: datetime) -> MessageStatusInfo:
        return cls(status=MessageStatus.PENDING, sent_at=sent_at)

    @classmethod
    def locked(cls, lock: Lock) -> MessageStatusInfo:
        return cls(
            status=MessageStatus.LOCKED,
            locked_by=lock.locked_by,
            locked_at=lock.locked_at,
            visibility_timeout=lock.visibility_timeout,
        )
