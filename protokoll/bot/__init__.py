"""
Discord adapter for the capture pipeline.

Only ``replies`` is imported eagerly; ``protokoll.bot.app`` pulls in discord.py.
"""

from .replies import format_summary_reply

__all__ = ["format_summary_reply"]
