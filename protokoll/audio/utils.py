"""
Utility functions for audio processing.

This module provides helper functions for PCM frame inspection, WAV file
operations and file naming. Used by the segmenter and the session ledger.

Key features:
- Audio level (RMS) calculation on raw 16-bit PCM frames
- PCM byte count to duration conversion
- WAV file duration calculation
- Filesystem-safe timestamp slugs
"""

import re
import wave
from datetime import datetime

import numpy as np


def pcm_to_float(frame: bytes) -> np.ndarray:
    """
    Convert interleaved signed 16-bit PCM bytes to float32 in [-1, 1].

    A trailing odd byte (half a sample) is ignored.
    """
    usable = len(frame) - (len(frame) % 2)
    if usable <= 0:
        return np.zeros(0, dtype=np.float32)
    return np.frombuffer(frame[:usable], dtype=np.int16).astype(np.float32) / 32768.0


def get_audio_level(audio: np.ndarray) -> float:
    """
    Calculate RMS (Root Mean Square) audio level.

    Provides a measure of audio loudness/amplitude.

    Args:
        audio: Audio array (float, normalized to [-1, 1])

    Returns:
        RMS level as float (0.0 for an empty array)
    """
    if audio.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(audio**2)))


def pcm_duration_seconds(num_bytes: int, rate: int, channels: int, sample_width: int = 2) -> float:
    """Duration of a raw PCM buffer of ``num_bytes`` bytes."""
    bytes_per_second = rate * channels * sample_width
    if bytes_per_second <= 0:
        return 0.0
    return num_bytes / float(bytes_per_second)


def get_audio_duration(filepath: str) -> float:
    """
    Get duration of a WAV file in seconds.

    Args:
        filepath: Path to WAV file

    Returns:
        Duration in seconds
    """
    with wave.open(filepath, "rb") as wf:
        frames = wf.getnframes()
        rate = wf.getframerate()
        return frames / float(rate)


def timestamp_slug(dt: datetime, with_millis: bool = False) -> str:
    """
    Format a datetime for use in file names.

    ``2025-04-27T18:45:12.123`` becomes ``2025-04-27T18-45-12`` (or
    ``2025-04-27T18-45-12-123`` with ``with_millis``).
    """
    stamp = dt.strftime("%Y-%m-%dT%H-%M-%S")
    if with_millis:
        stamp = f"{stamp}-{dt.microsecond // 1000:03d}"
    return stamp


def safe_name(value: str) -> str:
    """Reduce an identifier to characters that are safe in file names."""
    cleaned = re.sub(r"[^A-Za-z0-9_.-]+", "_", str(value)).strip("._")
    return cleaned or "unknown"
