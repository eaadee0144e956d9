"""
Domain models for the email tracking feature.

Sessions and draft records are plain dataclasses shared by the tracker, the
classification engine and the state repository. The pydantic snapshot at the
bottom is the persisted shape; it owns ISO-8601 serialization so timestamps
come back as aware datetimes after a restart.
"""

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class CloseReason(str, Enum):
    OPENED_ANOTHER = "opened_another"
    MANUAL_CLOSE = "manual_close"
    TIMEOUT = "timeout"


@dataclass(slots=True)
class Checkpoint:
    """Last-seen position in the Gmail history feed."""

    cursor: str
    updated_at: datetime


@dataclass(slots=True)
class Session:
    """One open-to-close reading interval for a single message."""

    message_id: str
    subject: str
    sender: str
    opened_at: datetime
    closed_at: datetime | None = None
    estimated_duration_minutes: float | None = None
    close_reason: CloseReason | None = None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def close(self, closed_at: datetime, reason: CloseReason) -> float:
        """Close the session and return its duration in seconds."""
        duration_seconds = max((closed_at - self.opened_at).total_seconds(), 0.0)
        self.closed_at = closed_at
        self.estimated_duration_minutes = duration_seconds / 60
        self.close_reason = reason
        return duration_seconds


@dataclass(slots=True)
class DraftActivityRecord:
    """Unconfirmed, heuristically classified time entry awaiting review."""

    id: str
    message_id: str
    date: str
    start_time: str
    duration_hours: float
    description: str
    inferred_client: str
    inferred_project: str
    billable: bool
    category: str = "communication"
    source: str = "gmail-history"
    automated: bool = True
    status: str = "pending"
    close_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Event payload / storage shape."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DraftActivityRecord":
        return cls(**data)


class SessionState(BaseModel):
    """Persisted form of a Session."""

    message_id: str
    subject: str
    sender: str
    opened_at: datetime
    closed_at: datetime | None = None
    estimated_duration_minutes: float | None = None
    close_reason: CloseReason | None = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionState":
        return cls(**asdict(session))

    def to_session(self) -> Session:
        return Session(**self.model_dump())


class TrackerStateSnapshot(BaseModel):
    """Single persisted record per tracker instance."""

    cursor: str | None = Field(None, description="Gmail historyId the next poll resumes from")
    cursor_updated_at: datetime | None = None
    sessions: list[SessionState] = Field(default_factory=list)
    processed_record_ids: list[str] = Field(default_factory=list)
    last_record_id: str | None = Field(None, description="Highest history record id already processed")
    pending_drafts: list[dict[str, Any]] = Field(default_factory=list)
