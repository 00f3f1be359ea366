"""
Session state and orchestration.

This package owns the in-memory session ledger, the bounded retry policy used
for recognition calls, and the orchestrator that reacts to start/end triggers.
"""

from .ledger import SessionLedger
from .orchestrator import FALLBACK_SPEAKER, SessionOrchestrator
from .retry import RetryPolicy

__all__ = ["FALLBACK_SPEAKER", "RetryPolicy", "SessionLedger", "SessionOrchestrator"]
