"""
Durable steps for background comic runs.

Each major phase of a run goes through `DurableStep.run(name, fn, ...)`, so a
transient failure (model timeout, S3 hiccup) retries that phase instead of the
whole job. The retry/backoff policy is pluggable and the runner keeps a record of
every step it executed, which is what tests and logs look at.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        return getattr(error, "retryable", True)


@dataclass
class StepRecord:
    name: str
    attempts: int = 0
    status: str = "running"  # running | completed | failed
    error: Optional[str] = None


class DurableStep(Protocol):
    def run(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        ...


@dataclass
class RetryingStepRunner:
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleep: Callable[[float], None] = time.sleep
    records: List[StepRecord] = field(default_factory=list)

    def run(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        record = StepRecord(name=name)
        self.records.append(record)
        while True:
            record.attempts += 1
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                record.error = f"{type(e).__name__}: {e}"
                if not self.policy.should_retry(e, record.attempts):
                    record.status = "failed"
                    logger.error(f"[Step:{name}] failed after {record.attempts} attempt(s): {e}")
                    raise
                delay = self.policy.delay_for(record.attempts)
                logger.warning(
                    f"[Step:{name}] attempt {record.attempts}/{self.policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                self.sleep(delay)
                continue
            record.status = "completed"
            logger.debug(f"[Step:{name}] completed in {record.attempts} attempt(s)")
            return result

    def step_names(self) -> List[str]:
        return [r.name for r in self.records]
