"""
User-facing reply texts for the voice bot.
"""

import os
from typing import Dict, Optional

from ..models import SummaryResult, SummaryStatus

MESSAGE_LIMIT = 2000


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def format_summary_reply(result: SummaryResult, paths: Optional[Dict[str, str]] = None, limit: int = MESSAGE_LIMIT) -> str:
    """
    Build the /leave reply for a session outcome.

    Args:
        result: Outcome of the end trigger
        paths: Files written by the SummaryArchive, if any
        limit: Platform message length limit

    Returns:
        Message text no longer than ``limit``
    """
    if result.status == SummaryStatus.NOT_ACTIVE:
        return "I'm not transcribing in this channel right now."
    if result.status == SummaryStatus.EMPTY:
        return "Disconnected. No transcript found or nothing to summarise."
    if result.status == SummaryStatus.FAILED:
        return _truncate(f"Disconnected. No summary available: {result.error or 'unknown error'}", limit)

    header = "📝 **Meeting Protokoll**"
    if paths and paths.get("text"):
        header += f" saved to `{os.path.basename(paths['text'])}`"
    header += ":"
    if not result.transcript_complete:
        header += "\n⚠️ Some speech was still being transcribed; the transcript may be incomplete."
    return _truncate(f"{header}\n\n{result.text}", limit)
