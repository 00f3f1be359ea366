"""
Failure taxonomy for the capture pipeline.

Per-utterance failures (TranscodeFailure, RecognitionFailure) are isolated by
the orchestrator and never end a session. LedgerWriteFailure is logged and
swallowed by the ledger. SummarizationFailure is the only failure a user sees,
as a "no summary available" outcome.
"""

from enum import Enum
from typing import Optional


class ProtokollError(Exception):
    """Base class for all pipeline failures."""


class TranscodeFailure(ProtokollError):
    """The external transcoding process exited with a non-zero code."""

    def __init__(self, exit_code: Optional[int], stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"ffmpeg exit code {exit_code}{detail}")


class FailureKind(Enum):
    """Classification of a recognition backend failure."""

    AUTH = "auth"
    QUOTA = "quota"
    MALFORMED = "malformed"
    TRANSIENT = "transient"


class RecognitionFailure(ProtokollError):
    """The recognition backend (or a local guard) rejected an artifact."""

    def __init__(self, kind: FailureKind, message: str):
        self.kind = kind
        super().__init__(f"[{kind.value}] {message}")


class LedgerWriteFailure(ProtokollError):
    """A transcript line could not be appended to the session log file."""


class InvalidTransition(ProtokollError):
    """A session lifecycle change that the state machine does not allow."""


class SummarizationFailure(ProtokollError):
    """The summarization backend could not produce a summary."""
