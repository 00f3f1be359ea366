"""
Utterance segmentation and normalization using ffmpeg.

This module turns a continuous per-speaker PCM feed into discrete utterances.
Each utterance is streamed into an ffmpeg process while it is being captured
and written out as a WAV file in the format the recognition backend expects.

Key features:
- Silence-terminated capture (no frames, or only quiet frames, for a window)
- Upper bound on utterance length
- Streaming transcode through an asyncio subprocess, exit code checked
- Minimum-duration floor that rejects brief noise and removes the file
"""

import asyncio
import logging
import os
import wave
from datetime import datetime
from typing import Callable, List, Optional

from ..config import PipelineSettings
from ..errors import TranscodeFailure
from ..models import AudioArtifact, utc_now
from .utils import (
    get_audio_duration,
    get_audio_level,
    pcm_duration_seconds,
    pcm_to_float,
    safe_name,
    timestamp_slug,
)

logger = logging.getLogger(__name__)


class SpeakerStream:
    """
    Live PCM feed for one speaker's current utterance.

    Frames are interleaved signed 16-bit PCM. ``push`` and ``close`` must be
    called on the event loop thread.
    """

    def __init__(self, speaker_id: str, started_at: Optional[datetime] = None):
        self.speaker_id = speaker_id
        self.started_at = started_at or utc_now()
        self.closed = False
        self._frames: asyncio.Queue = asyncio.Queue()

    def push(self, frame: bytes) -> None:
        if self.closed or not frame:
            return
        self._frames.put_nowait(frame)

    def close(self) -> None:
        """End the feed; the capture loop stops after draining queued frames."""
        if self.closed:
            return
        self.closed = True
        self._frames.put_nowait(None)

    async def next_frame(self, timeout: float) -> Optional[bytes]:
        """
        Wait for the next frame.

        Returns:
            The frame, or None when the stream was closed or nothing arrived
            within ``timeout`` seconds.
        """
        try:
            return await asyncio.wait_for(self._frames.get(), timeout)
        except asyncio.TimeoutError:
            return None


def build_ffmpeg_command(ffmpeg_path: str, output_path: str, settings: PipelineSettings) -> List[str]:
    """Arguments converting raw PCM on stdin to a normalized WAV file."""
    return [
        ffmpeg_path,
        "-y",
        "-loglevel",
        "error",
        "-f",
        "s16le",
        "-ar",
        str(settings.input_sample_rate),
        "-ac",
        str(settings.input_channels),
        "-i",
        "pipe:0",
        "-ac",
        str(settings.output_channels),
        "-ar",
        str(settings.output_sample_rate),
        "-c:a",
        "pcm_s16le",
        "-f",
        "wav",
        output_path,
    ]


class FfmpegTranscoder:
    """One ffmpeg process fed through stdin for a single utterance."""

    def __init__(self, output_path: str, settings: PipelineSettings):
        self.output_path = output_path
        self.settings = settings
        self.process: Optional[asyncio.subprocess.Process] = None
        self._pipe_broken = False

    async def start(self) -> None:
        command = build_ffmpeg_command(self.settings.ffmpeg_path, self.output_path, self.settings)
        try:
            self.process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeFailure(None, f"could not start {self.settings.ffmpeg_path}: {e}") from e

    async def write(self, frame: bytes) -> None:
        if self._pipe_broken or self.process is None or self.process.stdin is None:
            return
        try:
            self.process.stdin.write(frame)
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg died early; the exit code is reported by finish()
            self._pipe_broken = True

    async def finish(self) -> int:
        """Close stdin, wait for exit and raise TranscodeFailure on a non-zero code."""
        if self.process is None:
            raise TranscodeFailure(None, "transcoder was not started")
        if self.process.stdin is not None and not self._pipe_broken:
            self.process.stdin.close()
            try:
                await self.process.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                self._pipe_broken = True
        stderr = b""
        if self.process.stderr is not None:
            stderr = await self.process.stderr.read()
        code = await self.process.wait()
        if code != 0:
            raise TranscodeFailure(code, stderr.decode("utf-8", errors="replace"))
        return code

    async def abort(self) -> None:
        """Kill a still-running ffmpeg and reap it."""
        if self.process is None or self.process.returncode is not None:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            pass
        await self.process.wait()
        logger.debug(f"Aborted transcode of {self.output_path}")


TranscoderFactory = Callable[[str, PipelineSettings], FfmpegTranscoder]


class Segmenter:
    """
    Capture one utterance from a SpeakerStream and materialize it as an AudioArtifact.

    The utterance ends after ``silence_seconds`` without frames, after the same
    span of frames below the speech threshold, after ``max_utterance_seconds``
    of audio, or when the stream is closed.
    """

    def __init__(self, settings: PipelineSettings, transcoder_factory: Optional[TranscoderFactory] = None):
        self.settings = settings
        self.transcoder_factory = transcoder_factory or FfmpegTranscoder
        os.makedirs(settings.audio_dir, exist_ok=True)

    def is_speech(self, frame: bytes) -> bool:
        """True if the frame is loud enough to count as speech."""
        return get_audio_level(pcm_to_float(frame)) >= self.settings.speech_rms_threshold

    def frame_duration(self, frame: bytes) -> float:
        return pcm_duration_seconds(len(frame), self.settings.input_sample_rate, self.settings.input_channels)

    def artifact_path(self, speaker_id: str, started_at: datetime) -> str:
        name = f"{timestamp_slug(started_at, with_millis=True)}-{safe_name(speaker_id)}-mono.wav"
        return os.path.join(self.settings.audio_dir, name)

    async def capture(self, stream: SpeakerStream) -> Optional[AudioArtifact]:
        """
        Capture the stream's current utterance.

        Args:
            stream: Feed for one speaker; the first frame may already be queued

        Returns:
            AudioArtifact, or None if the utterance is shorter than the minimum duration

        Raises:
            TranscodeFailure: If ffmpeg could not be started or exited non-zero
        """
        path = self.artifact_path(stream.speaker_id, stream.started_at)
        transcoder = self.transcoder_factory(path, self.settings)
        await transcoder.start()

        try:
            frames = await self._feed(stream, transcoder)
        except BaseException:
            stream.close()
            await transcoder.abort()
            self._remove(path)
            raise
        # frames arriving from here on belong to the speaker's next utterance
        stream.close()

        try:
            await transcoder.finish()
        except TranscodeFailure:
            self._remove(path)
            raise

        return self._materialize(path, stream, frames)

    async def _feed(self, stream: SpeakerStream, transcoder: FfmpegTranscoder) -> int:
        """Pass frames to the transcoder until the utterance ends; returns the frame count."""
        captured = 0.0
        quiet = 0.0
        frames = 0
        while True:
            frame = await stream.next_frame(self.settings.silence_seconds)
            if frame is None:
                break
            await transcoder.write(frame)
            frames += 1
            duration = self.frame_duration(frame)
            captured += duration
            quiet = 0.0 if self.is_speech(frame) else quiet + duration
            if quiet >= self.settings.silence_seconds:
                break
            if captured >= self.settings.max_utterance_seconds:
                logger.info(f"Utterance from {stream.speaker_id} hit the {self.settings.max_utterance_seconds}s cap")
                break
        return frames

    def _materialize(self, path: str, stream: SpeakerStream, frames: int) -> Optional[AudioArtifact]:
        if not os.path.exists(path):
            logger.warning(f"Transcoder produced no file for {stream.speaker_id}")
            return None

        try:
            duration = get_audio_duration(path)
        except (wave.Error, EOFError, OSError) as e:
            logger.warning(f"Unreadable utterance file {path}: {e}")
            duration = 0.0

        if duration < self.settings.min_utterance_seconds:
            logger.debug(f"Dropping {duration:.2f}s utterance from {stream.speaker_id} ({frames} frames)")
            self._remove(path)
            return None

        size = os.path.getsize(path)
        logger.info(f"Saved {os.path.basename(path)} ({size / 1024:.1f} kB, {duration:.1f}s)")
        return AudioArtifact(
            path=path,
            size_bytes=size,
            duration_seconds=duration,
            speaker_id=stream.speaker_id,
            started_at=stream.started_at,
        )

    @staticmethod
    def _remove(path: str) -> None:
        if os.path.exists(path):
            os.unlink(path)
