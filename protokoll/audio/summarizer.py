"""
Meeting summarization functionality using OpenAI API.

This module turns a finished session transcript into meeting minutes
("Meeting Protokoll") using OpenAI's chat models. The backend has a hard input
ceiling, so long transcripts are summarized chunk by chunk and the partial
summaries are consolidated in one final call.

Key features:
- Approximate token count (characters / 4) computed locally
- Single-pass summary when the transcript fits the budget
- Greedy fixed-size chunking, per-chunk summaries, one consolidation call
- Lazy loading of the OpenAI client

Important: chunk boundaries fall on the budget edge, even mid-sentence, and
duplicate content across partial summaries is left to the consolidation
instruction.
"""

import logging
import math
from typing import Any, List, Optional

import openai

from ..config import PipelineSettings
from ..errors import SummarizationFailure

logger = logging.getLogger(__name__)

PARTIAL_SEPARATOR = "\n\n---\n\n"

SYSTEM_PROMPT = (
    "You are a helpful assistant that turns raw meeting transcripts into concise "
    '"Meeting Protokoll" in German, with timestamps and bullet points.'
)
CONSOLIDATION_SYSTEM_PROMPT = (
    "You are a helpful assistant that combines partial meeting transcripts into one concise final "
    '"Meeting Protokoll" in German, with timestamps and bullet points. '
    "Merge duplicate topics, decisions and action items."
)
FULL_PROMPT = "Bitte fasse dieses Transkript in ein Meeting-Protokoll zusammen:\n\n{text}"
CHUNK_PROMPT = "Hier ist ein Teil des Transkripts. Bitte fasse diesen Abschnitt zusammen:\n\n{text}"
CONSOLIDATION_PROMPT = (
    "Bitte fasse alle diese Teil-Zusammenfassungen nun in ein einzelnes Meeting-Protokoll zusammen:\n\n{text}"
)


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough token count: one token per ``chars_per_token`` characters."""
    return math.ceil(len(text) / chars_per_token)


def chunk_text(text: str, max_tokens: int = 6000, chars_per_token: int = 4) -> List[str]:
    """
    Split text into contiguous, non-overlapping slices within the token budget.

    Slices are cut every ``max_tokens * chars_per_token`` characters, so
    ``"".join(chunk_text(text))`` is always ``text``.
    """
    max_chars = max_tokens * chars_per_token
    if max_chars <= 0:
        raise ValueError("max_tokens and chars_per_token must be positive")
    return [text[start : start + max_chars] for start in range(0, len(text), max_chars)]


class MeetingSummarizer:
    """
    Handle meeting summarization using OpenAI API.

    Generates German meeting minutes from transcripts, organizing content by
    topic with timestamps and bullet points.
    """

    def __init__(self, settings: PipelineSettings, client: Optional[Any] = None):
        """
        Initialize summarizer.

        Args:
            settings: Pipeline settings (model, API key, token budget)
            client: Optional pre-built async client (used by tests)
        """
        self.settings = settings
        self.model = settings.summary_model
        self.token_budget = settings.token_budget
        self.chars_per_token = settings.chars_per_token
        self.client = client

    def _load_client(self):
        """Lazy load the async OpenAI client."""
        if self.client is None:
            self.client = openai.AsyncOpenAI(api_key=self.settings.openai_api_key or None)
            logger.info(f"OpenAI summary client loaded (model: {self.model})")
        return self.client

    async def _complete(self, system: str, user: str) -> str:
        client = self._load_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
        except openai.OpenAIError as e:
            raise SummarizationFailure(f"Summarization request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise SummarizationFailure("Summarization backend returned an empty response")
        return content.strip()

    async def summarize(self, transcript_text: str) -> str:
        """
        Generate meeting minutes from transcript text.

        Args:
            transcript_text: Full session transcript

        Returns:
            Final summary text

        Raises:
            SummarizationFailure: If the transcript is empty or any backend call fails
        """
        if not transcript_text or not transcript_text.strip():
            raise SummarizationFailure("Empty transcript provided")

        total_tokens = estimate_tokens(transcript_text, self.chars_per_token)
        logger.info(f"Transcript is ~{total_tokens} tokens")

        if total_tokens <= self.token_budget:
            return await self._complete(SYSTEM_PROMPT, FULL_PROMPT.format(text=transcript_text))

        logger.info("Transcript is too large; chunking...")
        chunks = chunk_text(transcript_text, self.token_budget, self.chars_per_token)
        partial_summaries = []
        for index, chunk in enumerate(chunks, start=1):
            logger.info(f"Summarizing chunk {index} of {len(chunks)}...")
            partial_summaries.append(await self._complete(SYSTEM_PROMPT, CHUNK_PROMPT.format(text=chunk)))

        logger.info("Performing a final summary of all partial summaries...")
        final_input = PARTIAL_SEPARATOR.join(partial_summaries)
        return await self._complete(CONSOLIDATION_SYSTEM_PROMPT, CONSOLIDATION_PROMPT.format(text=final_input))
