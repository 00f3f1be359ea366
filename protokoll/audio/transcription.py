"""
Audio transcription functionality using the OpenAI audio API.

This module submits one normalized utterance at a time to the hosted Whisper
model and turns every backend rejection into a typed RecognitionFailure.

Key features:
- Local guard checks (missing, empty, oversized artifact) before any network call
- Failure classification: auth, quota, malformed input, transient
- Bounded retry on transient failures through a RetryPolicy
- Language auto-detection (no language is forced, multilingual input works)
- Backend credential diagnosis for operators

Important: The OpenAI client is initialized only when first needed so that
importing the module never requires an API key.
"""

import logging
from typing import Any, Dict, Optional

import openai

from ..config import PipelineSettings
from ..errors import FailureKind, RecognitionFailure
from ..models import AudioArtifact

logger = logging.getLogger(__name__)

MALFORMED_STATUS_CODES = {400, 404, 413, 415, 422}
AUTH_STATUS_CODES = {401, 403}


def classify_openai_error(error: Exception) -> FailureKind:
    """
    Map an OpenAI SDK exception to a FailureKind.

    Args:
        error: Exception raised by an OpenAI client call

    Returns:
        FailureKind. Anything not recognised as permanent counts as transient.
    """
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError)):
        return FailureKind.TRANSIENT

    if isinstance(error, openai.APIStatusError):
        code = getattr(error, "code", None)
        if code == "insufficient_quota":
            return FailureKind.QUOTA
        status = error.status_code
        if status in AUTH_STATUS_CODES:
            return FailureKind.AUTH
        if status == 429:
            return FailureKind.QUOTA
        if status in MALFORMED_STATUS_CODES:
            return FailureKind.MALFORMED
        return FailureKind.TRANSIENT

    return FailureKind.TRANSIENT


class AudioTranscriber:
    """
    Handle utterance transcription using the OpenAI audio API.

    One call to ``transcribe`` is one backend attempt. Retrying is owned by the
    caller (see ``transcribe_with_retry``).
    """

    def __init__(self, settings: PipelineSettings, client: Optional[Any] = None):
        """
        Initialize transcriber.

        Args:
            settings: Pipeline settings (model name, API key, payload limit)
            client: Optional pre-built async client (used by tests)
        """
        self.settings = settings
        self.model = settings.transcription_model
        self.client = client

    def _load_client(self):
        """Lazy load the async OpenAI client."""
        if self.client is None:
            self.client = openai.AsyncOpenAI(api_key=self.settings.openai_api_key or None)
            logger.info(f"OpenAI transcription client loaded (model: {self.model})")
        return self.client

    def validate(self, artifact: AudioArtifact) -> None:
        """
        Fail fast without a network call if the artifact cannot be submitted.

        Raises:
            RecognitionFailure: MALFORMED for missing, empty or oversized files
        """
        if artifact is None or not artifact.exists():
            raise RecognitionFailure(FailureKind.MALFORMED, "audio artifact does not exist")
        if artifact.size_bytes <= 0:
            raise RecognitionFailure(FailureKind.MALFORMED, f"audio artifact is empty: {artifact.path}")
        if artifact.size_bytes > self.settings.max_upload_bytes:
            raise RecognitionFailure(
                FailureKind.MALFORMED,
                f"audio artifact is {artifact.size_bytes} bytes, limit is {self.settings.max_upload_bytes}",
            )

    async def transcribe(self, artifact: AudioArtifact) -> str:
        """
        Transcribe one artifact.

        Args:
            artifact: Normalized utterance produced by the Segmenter

        Returns:
            Recognized text, stripped (may be empty if nothing was recognized)

        Raises:
            RecognitionFailure: On guard failure or backend rejection
        """
        self.validate(artifact)
        client = self._load_client()

        try:
            handle = open(artifact.path, "rb")
        except OSError as e:
            raise RecognitionFailure(FailureKind.MALFORMED, f"cannot read {artifact.path}: {e}") from e

        with handle:
            try:
                transcription = await client.audio.transcriptions.create(model=self.model, file=handle)
            except openai.OpenAIError as e:
                kind = classify_openai_error(e)
                raise RecognitionFailure(kind, str(e)) from e

        if isinstance(transcription, str):
            text = transcription
        else:
            text = getattr(transcription, "text", None) or ""
        text = text.strip()
        logger.info(f"Whisper -> {text or '[empty]'}")
        return text

    async def transcribe_with_retry(self, artifact: AudioArtifact, policy) -> str:
        """
        Transcribe with a bounded retry policy, then consume the artifact.

        Every retry resubmits the same file. The file is deleted afterwards,
        whatever the outcome, unless KEEP_AUDIO is set.
        """
        try:
            return await policy.run(self.transcribe, artifact)
        finally:
            if not self.settings.keep_audio:
                artifact.discard()

    async def diagnose_backend(self) -> Dict[str, Any]:
        """
        Check that the configured key can reach the transcription and chat models.

        Returns:
            Report with keys 'ok', 'key_present', 'model_count',
            'transcription_model_available', 'completion_ok', 'failure_kind', 'error'
        """
        report: Dict[str, Any] = {
            "ok": False,
            "key_present": bool(self.settings.openai_api_key),
            "model_count": 0,
            "transcription_model_available": False,
            "completion_ok": False,
            "failure_kind": None,
            "error": None,
        }
        if not report["key_present"]:
            report["failure_kind"] = FailureKind.AUTH.value
            report["error"] = "OPENAI_API_KEY is not set"
            return report

        client = self._load_client()
        try:
            models = await client.models.list()
            ids = [model.id for model in models.data]
            report["model_count"] = len(ids)
            report["transcription_model_available"] = self.model in ids

            await client.chat.completions.create(
                model=self.settings.summary_model,
                messages=[{"role": "user", "content": "Hi"}],
                max_tokens=1,
            )
            report["completion_ok"] = True
            report["ok"] = True
        except openai.OpenAIError as e:
            report["failure_kind"] = classify_openai_error(e).value
            report["error"] = str(e)
        return report
