"""
Audio segmentation, transcription and summarization.

This package turns live per-speaker PCM into normalized utterance files,
transcribes them with the OpenAI audio API, and summarizes finished
transcripts with OpenAI chat models.

Main components:
- Segmenter: Silence-terminated capture, streamed through ffmpeg into 16 kHz mono WAV
- AudioTranscriber: Guarded, classified speech-to-text calls
- MeetingSummarizer: Single-pass or chunk-then-consolidate meeting minutes
- Utility functions: PCM levels, durations and file naming

Example usage:
    from protokoll.audio import Segmenter, SpeakerStream, AudioTranscriber

    segmenter = Segmenter(settings)
    artifact = await segmenter.capture(stream)
    text = await AudioTranscriber(settings).transcribe(artifact)
"""

from .segmenter import FfmpegTranscoder, Segmenter, SpeakerStream, build_ffmpeg_command
from .summarizer import MeetingSummarizer, chunk_text, estimate_tokens
from .transcription import AudioTranscriber, classify_openai_error
from .utils import get_audio_duration, get_audio_level, pcm_duration_seconds, pcm_to_float

__all__ = [
    "AudioTranscriber",
    "FfmpegTranscoder",
    "MeetingSummarizer",
    "Segmenter",
    "SpeakerStream",
    "build_ffmpeg_command",
    "chunk_text",
    "classify_openai_error",
    "estimate_tokens",
    "get_audio_duration",
    "get_audio_level",
    "pcm_duration_seconds",
    "pcm_to_float",
]
