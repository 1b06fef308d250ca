"""
Retry policy shared by every publish attempt.

Adapters return tagged results instead of raising, so the policy turns a
retryable failure into an exception tenacity can act on and hands the last
result back once attempts run out.
"""

from typing import Awaitable, Callable, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..logging_config import StructuredLogger, worker_logger
from .platforms.base import RETRYABLE_CATEGORIES, AdapterResult, ErrorCategory, classify_status

Classifier = Callable[[AdapterResult], ErrorCategory]


def default_classifier(result: AdapterResult) -> ErrorCategory:
    return result.category or classify_status(result.status_code)


class RetryableFailure(Exception):
    def __init__(self, result: AdapterResult):
        super().__init__(result.error)
        self.result = result


class RetryPolicy:
    """Bounded exponential backoff for transient and rate-limit failures."""

    def __init__(self, max_attempts: int = 3, backoff_seconds: float = 2.0, max_backoff_seconds: float = 30.0):
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.publish_max_attempts,
            backoff_seconds=settings.publish_backoff_seconds,
            max_backoff_seconds=settings.publish_backoff_max_seconds,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[AdapterResult]],
        classifier: Optional[Classifier] = None,
        log: Optional[StructuredLogger] = None,
    ) -> Tuple[AdapterResult, int]:
        """Run ``operation`` until it succeeds or fails permanently. Returns (result, attempts)."""
        classifier = classifier or default_classifier
        log = log or worker_logger
        attempts = 0

        def before_sleep(retry_state):
            failure = retry_state.outcome.exception()
            log.warning(
                "Retrying after transient failure",
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                reason=str(failure),
                category=failure.result.category.value if isinstance(failure, RetryableFailure) else None,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.max_backoff_seconds),
            retry=retry_if_exception_type(RetryableFailure),
            before_sleep=before_sleep,
            reraise=True,
        )

        result: Optional[AdapterResult] = None
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await operation()
                    if not result.success:
                        result.category = classifier(result)
                        if result.category in RETRYABLE_CATEGORIES:
                            raise RetryableFailure(result)
        except RetryableFailure as exhausted:
            return exhausted.result, attempts
        return result, attempts
