"""
Configuration management with three-tier precedence system:
1. Default values from codebase
2. Environment variables from .env
3. Explicit overrides passed by the caller (launcher, tests)

Precedence: Overrides > Environment Variables > Defaults
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SECRET_KEYS = {"DISCORD_TOKEN", "OPENAI_API_KEY"}
TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigManager:
    """Manages configuration with three-tier precedence."""

    # Default values (Tier 1 - Codebase defaults)
    DEFAULTS = {
        "DISCORD_TOKEN": "",
        "OPENAI_API_KEY": "",
        "TRANSCRIPTION_MODEL": "whisper-1",
        "SUMMARY_MODEL": "gpt-4o",
        "FFMPEG_PATH": "ffmpeg",
        "AUDIO_DIR": "audios",
        "TRANSCRIPT_DIR": "transcripts",
        "SUMMARY_DIR": "summaries",
        "KEEP_AUDIO": "false",
        "SILENCE_SECONDS": "1.5",
        "MAX_UTTERANCE_SECONDS": "120",
        "MIN_UTTERANCE_SECONDS": "0.25",
        "SPEECH_RMS_THRESHOLD": "0.01",
        "INPUT_SAMPLE_RATE": "48000",
        "INPUT_CHANNELS": "2",
        "OUTPUT_SAMPLE_RATE": "16000",
        "OUTPUT_CHANNELS": "1",
        "MAX_UPLOAD_BYTES": str(25 * 1024 * 1024),
        "TOKEN_BUDGET": "6000",
        "CHARS_PER_TOKEN": "4",
        "TRANSCRIBE_RETRIES": "2",
        "RETRY_BACKOFF_SECONDS": "1.0",
        "DRAIN_MAX_WAIT": "15",
        "DRAIN_GRACE_WAIT": "10",
        "LOG_LEVEL": "INFO",
    }

    @staticmethod
    def get(key: str, override: Optional[Any] = None) -> Any:
        """
        Get configuration value with three-tier precedence.

        Args:
            key: Configuration key
            override: Explicit value (highest priority)

        Returns:
            Configuration value from highest priority source

        Priority:
            1. Override (if provided and not empty)
            2. Environment variable
            3. Default value
        """
        value, _ = ConfigManager.get_display_value(key, override)
        return value

    @staticmethod
    def get_display_value(key: str, override: Optional[Any] = None) -> tuple[Any, str]:
        """
        Get configuration value and its source.

        Returns:
            Tuple of (value, source) where source is 'override', 'env', or 'default'
        """
        if override is not None and override != "":
            return override, "override"

        env_value = os.getenv(key)
        if env_value is not None and env_value != "":
            return env_value, "env"

        return ConfigManager.DEFAULTS.get(key, ""), "default"

    @staticmethod
    def get_int(key: str, override: Optional[Any] = None) -> int:
        return int(float(ConfigManager.get(key, override)))

    @staticmethod
    def get_float(key: str, override: Optional[Any] = None) -> float:
        return float(ConfigManager.get(key, override))

    @staticmethod
    def get_bool(key: str, override: Optional[Any] = None) -> bool:
        value = ConfigManager.get(key, override)
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in TRUE_VALUES


@dataclass
class PipelineSettings:
    """Typed view of the configuration used by the capture pipeline."""

    discord_token: str = ""
    openai_api_key: str = ""
    transcription_model: str = "whisper-1"
    summary_model: str = "gpt-4o"
    ffmpeg_path: str = "ffmpeg"
    audio_dir: str = "audios"
    transcript_dir: str = "transcripts"
    summary_dir: str = "summaries"
    keep_audio: bool = False
    silence_seconds: float = 1.5
    max_utterance_seconds: float = 120.0
    min_utterance_seconds: float = 0.25
    speech_rms_threshold: float = 0.01
    input_sample_rate: int = 48000
    input_channels: int = 2
    output_sample_rate: int = 16000
    output_channels: int = 1
    max_upload_bytes: int = 25 * 1024 * 1024
    token_budget: int = 6000
    chars_per_token: int = 4
    transcribe_retries: int = 2
    retry_backoff_seconds: float = 1.0
    drain_max_wait: float = 15.0
    drain_grace_wait: float = 10.0
    log_level: str = "INFO"


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> PipelineSettings:
    """
    Build PipelineSettings from overrides, environment and defaults.

    Args:
        overrides: Optional mapping of config keys (e.g. "SILENCE_SECONDS") to values

    Returns:
        Populated PipelineSettings
    """
    overrides = overrides or {}

    def _o(key: str) -> Optional[Any]:
        return overrides.get(key)

    return PipelineSettings(
        discord_token=ConfigManager.get("DISCORD_TOKEN", _o("DISCORD_TOKEN")),
        openai_api_key=ConfigManager.get("OPENAI_API_KEY", _o("OPENAI_API_KEY")),
        transcription_model=ConfigManager.get("TRANSCRIPTION_MODEL", _o("TRANSCRIPTION_MODEL")),
        summary_model=ConfigManager.get("SUMMARY_MODEL", _o("SUMMARY_MODEL")),
        ffmpeg_path=ConfigManager.get("FFMPEG_PATH", _o("FFMPEG_PATH")),
        audio_dir=ConfigManager.get("AUDIO_DIR", _o("AUDIO_DIR")),
        transcript_dir=ConfigManager.get("TRANSCRIPT_DIR", _o("TRANSCRIPT_DIR")),
        summary_dir=ConfigManager.get("SUMMARY_DIR", _o("SUMMARY_DIR")),
        keep_audio=ConfigManager.get_bool("KEEP_AUDIO", _o("KEEP_AUDIO")),
        silence_seconds=ConfigManager.get_float("SILENCE_SECONDS", _o("SILENCE_SECONDS")),
        max_utterance_seconds=ConfigManager.get_float("MAX_UTTERANCE_SECONDS", _o("MAX_UTTERANCE_SECONDS")),
        min_utterance_seconds=ConfigManager.get_float("MIN_UTTERANCE_SECONDS", _o("MIN_UTTERANCE_SECONDS")),
        speech_rms_threshold=ConfigManager.get_float("SPEECH_RMS_THRESHOLD", _o("SPEECH_RMS_THRESHOLD")),
        input_sample_rate=ConfigManager.get_int("INPUT_SAMPLE_RATE", _o("INPUT_SAMPLE_RATE")),
        input_channels=ConfigManager.get_int("INPUT_CHANNELS", _o("INPUT_CHANNELS")),
        output_sample_rate=ConfigManager.get_int("OUTPUT_SAMPLE_RATE", _o("OUTPUT_SAMPLE_RATE")),
        output_channels=ConfigManager.get_int("OUTPUT_CHANNELS", _o("OUTPUT_CHANNELS")),
        max_upload_bytes=ConfigManager.get_int("MAX_UPLOAD_BYTES", _o("MAX_UPLOAD_BYTES")),
        token_budget=ConfigManager.get_int("TOKEN_BUDGET", _o("TOKEN_BUDGET")),
        chars_per_token=ConfigManager.get_int("CHARS_PER_TOKEN", _o("CHARS_PER_TOKEN")),
        transcribe_retries=ConfigManager.get_int("TRANSCRIBE_RETRIES", _o("TRANSCRIBE_RETRIES")),
        retry_backoff_seconds=ConfigManager.get_float("RETRY_BACKOFF_SECONDS", _o("RETRY_BACKOFF_SECONDS")),
        drain_max_wait=ConfigManager.get_float("DRAIN_MAX_WAIT", _o("DRAIN_MAX_WAIT")),
        drain_grace_wait=ConfigManager.get_float("DRAIN_GRACE_WAIT", _o("DRAIN_GRACE_WAIT")),
        log_level=str(ConfigManager.get("LOG_LEVEL", _o("LOG_LEVEL"))).upper(),
    )


def describe_settings(overrides: Optional[Dict[str, Any]] = None) -> List[Dict[str, str]]:
    """
    List every known key with its effective value and source.

    Secrets are masked so the rows can be logged at startup.
    """
    overrides = overrides or {}
    rows = []
    for key in ConfigManager.DEFAULTS:
        value, source = ConfigManager.get_display_value(key, overrides.get(key))
        shown = str(value)
        if key in SECRET_KEYS:
            shown = f"{shown[:4]}..." if shown else "(unset)"
        rows.append({"key": key, "value": shown, "source": source})
    return rows
