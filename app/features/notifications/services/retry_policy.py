from dataclasses import dataclass

from app.platform.config import settings


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff for notification jobs.

    ``retries_so_far`` counts failed attempts, so the first retry waits
    ``initial_delay_ms`` and each later one doubles up to ``max_delay_ms``.
    """

    max_attempts: int = 5
    initial_delay_ms: int = 3000
    max_delay_ms: int = 300_000

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("delays must satisfy 0 <= initial_delay_ms <= max_delay_ms")

    @property
    def max_retries(self) -> int:
        return self.max_attempts - 1

    def delay_ms(self, retries_so_far: int) -> int:
        return min(self.initial_delay_ms * (2 ** retries_so_far), self.max_delay_ms)

    def countdown(self, retries_so_far: int) -> float:
        """Delay in seconds, as Celery's ``countdown`` expects."""
        return self.delay_ms(retries_so_far) / 1000

    def is_exhausted(self, attempts_made: int) -> bool:
        return attempts_made >= self.max_attempts


def notification_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
        initial_delay_ms=settings.NOTIFICATION_INITIAL_DELAY_MS,
        max_delay_ms=settings.NOTIFICATION_MAX_DELAY_MS,
    )
