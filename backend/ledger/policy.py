"""Request pacing and retry policies applied uniformly by the reconciler."""

from __future__ import annotations

from dataclasses import dataclass

from app.core.config import Settings


@dataclass(frozen=True, slots=True)
class BatchPolicy:
    batch_size: int
    batch_delay: float
    call_delay: float

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.batch_delay < 0 or self.call_delay < 0:
            raise ValueError("delays must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchPolicy":
        if settings.has_elevated_access:
            return cls(
                batch_size=settings.reconcile_batch_size_keyed,
                batch_delay=settings.reconcile_batch_delay_keyed,
                call_delay=settings.reconcile_call_delay_keyed,
            )
        return cls(
            batch_size=settings.reconcile_batch_size_public,
            batch_delay=settings.reconcile_batch_delay_public,
            call_delay=settings.reconcile_call_delay_public,
        )


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """``backoff[n]`` is the pause before retry ``n + 1``; one attempt per delay plus the first."""

    backoff: tuple[float, ...] = (2.0, 4.0, 8.0)

    @property
    def max_attempts(self) -> int:
        return len(self.backoff) + 1

    def delay_for(self, retry: int) -> float:
        return self.backoff[min(retry, len(self.backoff) - 1)] if self.backoff else 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(settings.ledger_retry_backoff_schedule)


__all__ = ["BatchPolicy", "RetryPolicy"]
