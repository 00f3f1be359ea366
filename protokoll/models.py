"""
Data models for the capture pipeline.
"""

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionKey:
    """Identifies one joined voice channel: (room, channel)."""

    room_id: str
    channel_id: str

    def __str__(self) -> str:
        return f"{self.room_id}:{self.channel_id}"


class SessionState(Enum):
    """Lifecycle of a session."""

    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass(frozen=True)
class TranscriptEntry:
    """A single attributed transcript line. Immutable once appended."""

    timestamp: datetime
    speaker: str
    text: str
    spoken_at: Optional[datetime] = None

    def format_line(self) -> str:
        """Render the entry the way it is written to the session log."""
        return f"[{self.timestamp.isoformat(timespec='milliseconds')}] {self.speaker}: {self.text}"


@dataclass
class Session:
    """Per-(room, channel) state owned by the SessionLedger."""

    key: SessionKey
    started_at: datetime
    log_path: str
    entries: List[TranscriptEntry] = field(default_factory=list)
    in_flight: Set[str] = field(default_factory=set)
    state: SessionState = SessionState.OPEN
    idle: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self):
        if not self.in_flight:
            self.idle.set()


@dataclass
class AudioArtifact:
    """A normalized WAV file holding one utterance."""

    path: str
    size_bytes: int
    duration_seconds: float
    speaker_id: str
    started_at: datetime

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def discard(self) -> None:
        """Delete the file if it is still on disk."""
        if os.path.exists(self.path):
            os.unlink(self.path)


class SummaryStatus(Enum):
    """Outcome of a session-end trigger."""

    SUMMARIZED = "summarized"
    EMPTY = "empty"
    FAILED = "failed"
    NOT_ACTIVE = "not_active"


@dataclass
class SummaryResult:
    """Final outcome handed to the delivery collaborator. Not retained."""

    key: SessionKey
    status: SummaryStatus
    closed_at: datetime
    text: Optional[str] = None
    entry_count: int = 0
    transcript_complete: bool = True
    error: Optional[str] = None

    @property
    def has_summary(self) -> bool:
        return self.status == SummaryStatus.SUMMARIZED and bool(self.text)
