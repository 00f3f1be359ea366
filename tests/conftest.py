"""Pytest configuration helpers."""

import pytest

from protokoll.config import PipelineSettings


@pytest.fixture
def settings(tmp_path):
    """Fast pipeline settings rooted in a temporary directory."""
    return PipelineSettings(
        openai_api_key="sk-test",
        audio_dir=str(tmp_path / "audios"),
        transcript_dir=str(tmp_path / "transcripts"),
        summary_dir=str(tmp_path / "summaries"),
        silence_seconds=0.05,
        retry_backoff_seconds=0.0,
        drain_max_wait=2.0,
        drain_grace_wait=1.0,
    )
