"""
Session orchestration for live voice capture.

This module wires the segmenter, transcriber, ledger and summarizer together
in response to two external triggers:
- start: open a session and route speaker audio into per-utterance tasks
- end: drain in-flight work, summarize, close and forget the session

Per-utterance failures are logged and isolated. A summarization failure is
reported as a FAILED result; the session is closed either way.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from ..audio.segmenter import Segmenter, SpeakerStream
from ..audio.summarizer import MeetingSummarizer
from ..audio.transcription import AudioTranscriber
from ..config import PipelineSettings
from ..errors import InvalidTransition, RecognitionFailure, SummarizationFailure, TranscodeFailure
from ..models import Session, SessionKey, SessionState, SummaryResult, SummaryStatus, utc_now
from .ledger import SessionLedger
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

FALLBACK_SPEAKER = "Someone"

NameResolver = Callable[[SessionKey, str], Awaitable[str]]
SummaryHandler = Callable[[SummaryResult], Awaitable[None]]
FatalHandler = Callable[[BaseException], None]


def stop_event_loop(error: BaseException) -> None:
    """Default fatal handler: stop the running loop so the process exits."""
    logger.critical(f"Unrecoverable failure, stopping: {error!r}")
    asyncio.get_running_loop().stop()


class SessionOrchestrator:
    """Drives the per-session capture -> transcription -> summary pipeline."""

    def __init__(
        self,
        settings: PipelineSettings,
        ledger: Optional[SessionLedger] = None,
        segmenter: Optional[Segmenter] = None,
        transcriber: Optional[AudioTranscriber] = None,
        summarizer: Optional[MeetingSummarizer] = None,
        retry_policy: Optional[RetryPolicy] = None,
        resolve_name: Optional[NameResolver] = None,
        on_summary: Optional[SummaryHandler] = None,
        on_fatal: Optional[FatalHandler] = None,
    ):
        self.settings = settings
        self.ledger = ledger or SessionLedger(settings.transcript_dir)
        self.segmenter = segmenter or Segmenter(settings)
        self.transcriber = transcriber or AudioTranscriber(settings)
        self.summarizer = summarizer or MeetingSummarizer(settings)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.resolve_name = resolve_name
        self.on_summary = on_summary
        self.on_fatal = on_fatal or stop_event_loop

        self._streams: Dict[SessionKey, Dict[str, SpeakerStream]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def start_session(self, key: SessionKey) -> Session:
        """Start trigger: open (or reuse) the session for ``key``."""
        session = self.ledger.open_session(key)
        self._streams.setdefault(key, {})
        return session

    def on_audio_frame(self, key: SessionKey, speaker_id, pcm: bytes) -> bool:
        """
        Route one PCM frame from a speaker.

        A loud frame from a speaker without a running utterance starts a new
        utterance task. Must be called on the event loop thread.

        Returns:
            True if the frame was accepted
        """
        session = self.ledger.get(key)
        if session is None or session.state != SessionState.OPEN:
            return False

        speaker_id = str(speaker_id)
        streams = self._streams.setdefault(key, {})
        stream = streams.get(speaker_id)
        if stream is not None and not stream.closed:
            stream.push(pcm)
            return True

        if not self.segmenter.is_speech(pcm):
            return False

        task_id = self.ledger.begin_task(key)
        stream = SpeakerStream(speaker_id)
        stream.push(pcm)
        streams[speaker_id] = stream
        logger.debug(f"Speech start from {speaker_id} in {key}")

        task = asyncio.get_running_loop().create_task(self._process_utterance(session, stream, task_id))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return True

    async def _process_utterance(self, session: Session, stream: SpeakerStream, task_id: str) -> None:
        key = session.key
        try:
            try:
                artifact = await self.segmenter.capture(stream)
            finally:
                self._forget_stream(key, stream)
            if artifact is None:
                return

            text = await self.transcriber.transcribe_with_retry(artifact, self.retry_policy)
            if not text:
                logger.info(f"No speech recognized for {stream.speaker_id} in {key}")
                return

            speaker = await self._resolve_speaker(key, stream.speaker_id)
            # a re-joined channel has a new Session object; late lines stay with the old one
            if self.ledger.get(key) is not session or session.state == SessionState.CLOSED:
                logger.warning(f"Session {key} closed before {speaker}'s line arrived: {text}")
                return
            self.ledger.append(key, speaker, text, spoken_at=stream.started_at)
        except TranscodeFailure as e:
            logger.error(f"Transcoding failed for {stream.speaker_id} in {key}: {e}")
        except RecognitionFailure as e:
            logger.error(f"Whisper failed for {stream.speaker_id} in {key}, utterance dropped: {e}")
        finally:
            self.ledger.end_task(key, task_id)

    def _forget_stream(self, key: SessionKey, stream: SpeakerStream) -> None:
        stream.close()
        streams = self._streams.get(key, {})
        if streams.get(stream.speaker_id) is stream:
            del streams[stream.speaker_id]

    async def _resolve_speaker(self, key: SessionKey, speaker_id: str) -> str:
        if self.resolve_name is None:
            return FALLBACK_SPEAKER
        try:
            name = await self.resolve_name(key, speaker_id)
        except Exception as e:  # noqa: BLE001 - display names are best effort
            logger.warning(f"Could not resolve display name for {speaker_id}: {e}")
            return FALLBACK_SPEAKER
        return name or FALLBACK_SPEAKER

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.critical(f"Utterance task crashed: {error!r}", exc_info=error)
            self.on_fatal(error)

    async def end_session(self, key: SessionKey) -> SummaryResult:
        """
        End trigger: drain, summarize and close the session for ``key``.

        Returns:
            SummaryResult with status SUMMARIZED, EMPTY, FAILED or NOT_ACTIVE
        """
        try:
            session = self.ledger.mark_draining(key)
        except InvalidTransition as e:
            logger.warning(f"End trigger ignored: {e}")
            result = SummaryResult(key=key, status=SummaryStatus.NOT_ACTIVE, closed_at=utc_now(), error=str(e))
            await self._deliver(result)
            return result

        for stream in list(self._streams.get(key, {}).values()):
            stream.close()

        complete = await self.ledger.drain(key, self.settings.drain_max_wait, self.settings.drain_grace_wait)
        if not complete:
            logger.warning(f"Summarizing {key} with a possibly incomplete transcript")

        transcript = self.ledger.transcript_text(key)
        entry_count = len(session.entries)
        status = SummaryStatus.EMPTY
        text = None
        error = None
        try:
            if transcript.strip():
                text = await self.summarizer.summarize(transcript)
                status = SummaryStatus.SUMMARIZED
            else:
                logger.info(f"Nothing to summarize for {key}")
        except SummarizationFailure as e:
            logger.error(f"Failed to summarise transcript for {key}: {e}")
            status = SummaryStatus.FAILED
            error = str(e)
        finally:
            self.ledger.mark_closed(key)
            self.ledger.remove(key)
            self._streams.pop(key, None)

        result = SummaryResult(
            key=key,
            status=status,
            closed_at=utc_now(),
            text=text,
            entry_count=entry_count,
            transcript_complete=complete,
            error=error,
        )
        await self._deliver(result)
        return result

    async def _deliver(self, result: SummaryResult) -> None:
        """Hand the result to the delivery hook; the caller gets the result even if the hook fails."""
        if self.on_summary is None:
            return
        try:
            await self.on_summary(result)
        except Exception:  # noqa: BLE001 - archiving must not swallow the end-trigger reply
            logger.exception(f"Delivering the {result.status.value} result for {result.key} failed")

    async def end_all(self) -> List[SummaryResult]:
        """End every open session (process shutdown)."""
        results = []
        for key in self.ledger.active_keys():
            session = self.ledger.get(key)
            if session is not None and session.state == SessionState.OPEN:
                results.append(await self.end_session(key))
        return results
