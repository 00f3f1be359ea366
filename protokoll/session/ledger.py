"""
In-memory, process-wide state for voice sessions.

This module tracks one Session per (room, channel):
- The ordered transcript, appended in completion order
- The set of in-flight transcription tasks
- The lifecycle: open -> draining -> closed

Every transcript line is also appended to a per-session log file. A failed
write is logged and swallowed; the in-memory transcript stays authoritative.
All methods run on the event loop thread and never suspend in the middle of a
mutation.
"""

import asyncio
import logging
import os
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from ..audio.utils import safe_name, timestamp_slug
from ..errors import InvalidTransition, LedgerWriteFailure
from ..models import Session, SessionKey, SessionState, TranscriptEntry, utc_now

logger = logging.getLogger(__name__)


class SessionLedger:
    """Owns every Session of the process."""

    def __init__(self, transcript_dir: str = "transcripts"):
        """
        Initialize the ledger.

        Args:
            transcript_dir: Directory for the append-only session logs
        """
        self.transcript_dir = transcript_dir
        os.makedirs(self.transcript_dir, exist_ok=True)
        self._sessions: Dict[SessionKey, Session] = {}

    def log_path_for(self, key: SessionKey, started_at: datetime) -> str:
        """Deterministic log file name from room, channel and session start."""
        name = f"{safe_name(key.room_id)}-{safe_name(key.channel_id)}-{timestamp_slug(started_at)}.log"
        return os.path.join(self.transcript_dir, name)

    def open_session(self, key: SessionKey, started_at: Optional[datetime] = None) -> Session:
        """
        Return the open session for ``key``, creating it if needed.

        Raises:
            InvalidTransition: If a session for ``key`` is still draining
        """
        session = self._sessions.get(key)
        if session is not None:
            if session.state != SessionState.OPEN:
                raise InvalidTransition(f"Session {key} is {session.state.value}, cannot reopen")
            return session

        started_at = started_at or utc_now()
        session = Session(key=key, started_at=started_at, log_path=self.log_path_for(key, started_at))
        self._sessions[key] = session
        logger.info(f"Session {key} opened (log: {session.log_path})")
        return session

    def get(self, key: SessionKey) -> Optional[Session]:
        return self._sessions.get(key)

    def active_keys(self) -> List[SessionKey]:
        return list(self._sessions)

    def append(self, key: SessionKey, speaker: str, text: str, spoken_at: Optional[datetime] = None) -> Optional[TranscriptEntry]:
        """
        Append a transcript line. Never blocks, never deduplicates.

        Empty text is ignored. A session is created on first speech if none
        exists. Appends to a closed session are dropped.

        Returns:
            The appended entry, or None if nothing was appended
        """
        text = (text or "").strip()
        if not text:
            return None

        session = self._sessions.get(key)
        if session is None:
            session = self.open_session(key)
        if session.state == SessionState.CLOSED:
            logger.warning(f"Dropping line for closed session {key}: {speaker}: {text}")
            return None

        entry = TranscriptEntry(timestamp=utc_now(), speaker=speaker, text=text, spoken_at=spoken_at)
        session.entries.append(entry)

        try:
            self._write_line(session, entry)
        except LedgerWriteFailure as e:
            logger.error(f"Failed to write transcript: {e}")
        return entry

    def _write_line(self, session: Session, entry: TranscriptEntry) -> None:
        try:
            with open(session.log_path, "a", encoding="utf-8") as handle:
                handle.write(entry.format_line() + "\n")
        except OSError as e:
            raise LedgerWriteFailure(f"{session.log_path}: {e}") from e

    def begin_task(self, key: SessionKey) -> str:
        """
        Register one in-flight transcription for ``key``.

        Returns:
            Task identifier to pass to ``end_task``

        Raises:
            InvalidTransition: If the session is not open
        """
        session = self._sessions.get(key)
        if session is None:
            session = self.open_session(key)
        if session.state != SessionState.OPEN:
            raise InvalidTransition(f"Session {key} is {session.state.value}, not accepting new tasks")

        task_id = uuid.uuid4().hex
        session.in_flight.add(task_id)
        session.idle.clear()
        return task_id

    def end_task(self, key: SessionKey, task_id: str) -> None:
        """Remove a task from the in-flight set (success, failure or exhausted retries)."""
        session = self._sessions.get(key)
        if session is None:
            return
        session.in_flight.discard(task_id)
        if not session.in_flight:
            session.idle.set()

    def is_quiescent(self, key: SessionKey) -> bool:
        session = self._sessions.get(key)
        return session is None or not session.in_flight

    def in_flight_count(self, key: SessionKey) -> int:
        session = self._sessions.get(key)
        return len(session.in_flight) if session else 0

    async def drain(self, key: SessionKey, max_wait: float, grace_wait: float) -> bool:
        """
        Wait for the session to become quiescent.

        Waits up to ``max_wait`` seconds, then one extra ``grace_wait`` window.
        Never cancels anything.

        Returns:
            True if the in-flight set emptied in time, False if the transcript
            may be incomplete
        """
        session = self._sessions.get(key)
        if session is None or not session.in_flight:
            return True

        if await self._wait_idle(session, max_wait):
            return True

        logger.warning(
            f"Session {key} still has {len(session.in_flight)} task(s) after {max_wait}s; "
            f"granting {grace_wait}s grace"
        )
        if await self._wait_idle(session, grace_wait):
            return True

        logger.warning(f"Session {key} drain timed out with {len(session.in_flight)} task(s) in flight")
        return False

    @staticmethod
    async def _wait_idle(session: Session, timeout: float) -> bool:
        if not session.in_flight:
            return True
        if timeout <= 0:
            return False
        try:
            await asyncio.wait_for(session.idle.wait(), timeout)
        except asyncio.TimeoutError:
            return not session.in_flight
        return True

    def mark_draining(self, key: SessionKey) -> Session:
        """
        Open -> Draining.

        Raises:
            InvalidTransition: If there is no open session for ``key``
        """
        session = self._sessions.get(key)
        if session is None:
            raise InvalidTransition(f"No session for {key}")
        if session.state != SessionState.OPEN:
            raise InvalidTransition(f"Session {key} is {session.state.value}, cannot start draining")
        session.state = SessionState.DRAINING
        logger.info(f"Session {key} draining ({len(session.in_flight)} task(s) in flight)")
        return session

    def mark_closed(self, key: SessionKey) -> Session:
        """
        Draining -> Closed.

        Raises:
            InvalidTransition: If the session is not draining
        """
        session = self._sessions.get(key)
        if session is None:
            raise InvalidTransition(f"No session for {key}")
        if session.state != SessionState.DRAINING:
            raise InvalidTransition(f"Session {key} is {session.state.value}, cannot close without draining")
        session.state = SessionState.CLOSED
        logger.info(f"Session {key} closed with {len(session.entries)} line(s)")
        return session

    def remove(self, key: SessionKey) -> Optional[Session]:
        return self._sessions.pop(key, None)

    def entries(self, key: SessionKey) -> List[TranscriptEntry]:
        session = self._sessions.get(key)
        return list(session.entries) if session else []

    def transcript_text(self, key: SessionKey) -> str:
        """The session transcript in log-file line format."""
        return "".join(entry.format_line() + "\n" for entry in self.entries(key))
