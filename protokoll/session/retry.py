"""
Bounded retry policy parameterized by failure classification.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_fixed

from ..config import PipelineSettings
from ..errors import FailureKind, RecognitionFailure

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """
    Retry a coroutine on classified failures only.

    ``max_retries`` counts resubmissions, so a call is attempted at most
    ``max_retries + 1`` times. Failures whose kind is not in ``retry_on`` are
    re-raised immediately.
    """

    max_retries: int = 2
    backoff_seconds: float = 1.0
    retry_on: FrozenSet[FailureKind] = field(default_factory=lambda: frozenset({FailureKind.TRANSIENT}))

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "RetryPolicy":
        return cls(max_retries=settings.transcribe_retries, backoff_seconds=settings.retry_backoff_seconds)

    def should_retry(self, error: BaseException) -> bool:
        return isinstance(error, RecognitionFailure) and error.kind in self.retry_on

    def _log_retry(self, retry_state) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.max_retries + 1} failed ({error}); "
            f"retrying in {self.backoff_seconds:.1f}s"
        )

    async def run(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``fn(*args, **kwargs)`` under this policy and return its result."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_exception(self.should_retry),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return await retrying(fn, *args, **kwargs)
