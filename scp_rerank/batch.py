"""Sequential batch executor with rate-limit aware retries.

Shared by the embedding and tagging pipelines. Items run one at a time inside
a batch, with a fixed pause between batches, so provider rate limits stay
predictable. Per-item failures are collected, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from scp_rerank.constants import (
    BATCH_DELAY_SECONDS,
    BATCH_SIZE,
    MAX_ATTEMPTS,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_MAX_DELAY_SECONDS,
)
from scp_rerank.errors import ParseError, ProviderError, RateLimitedError
from scp_rerank.models import ItemError

logger = logging.getLogger(__name__)

type ProgressCallback = Callable[[int, int], None]
type SleepFn = Callable[[float], Awaitable[None]]

_RATE_LIMIT_MESSAGE_RE = re.compile(r"rate[\s_-]?limit|too many requests|\b429\b", re.I)


def is_rate_limit_error(exc: BaseException) -> bool:
    """True if ``exc`` signals provider throttling and the call may be retried."""
    if isinstance(exc, RateLimitedError):
        return True
    # Provider errors are already classified; a 429 that is not RateLimitedError
    # means the quota is gone.
    if isinstance(exc, (ParseError, ProviderError)) or not isinstance(exc, Exception):
        return False
    if getattr(exc, "status_code", None) == 429:
        return True
    return bool(_RATE_LIMIT_MESSAGE_RE.search(str(exc)))


@dataclass
class BatchOutcome[R]:
    results: list[R] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    total: int = 0
    retries: int = 0
    elapsed_seconds: float = 0.0


class BatchRunner:
    def __init__(
        self,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        retry_base_delay: float = RETRY_BASE_DELAY_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._backoff = wait_exponential(
            multiplier=retry_base_delay, exp_base=2, max=RETRY_MAX_DELAY_SECONDS
        )

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            return exc.retry_after
        return self._backoff(retry_state)

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Rate limited (attempt %d), retrying in %.1fs: %s",
            retry_state.attempt_number,
            wait,
            exc,
        )

    async def _process[T, R](
        self,
        item: T,
        produce: Callable[[T], Awaitable[R]],
        key: str,
        outcome: BatchOutcome[R],
    ) -> None:
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                retry=retry_if_exception(is_rate_limit_error),
                wait=self._retry_wait,
                sleep=self._sleep,
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await produce(item)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error("Item %s failed after %d attempt(s): %s", key, attempts, message)
            outcome.errors.append(ItemError(key, message, attempts=attempts))
            outcome.retries += max(0, attempts - 1)
            return

        outcome.results.append(result)
        outcome.retries += attempts - 1

    async def run[T, R](
        self,
        items: Sequence[T],
        produce: Callable[[T], Awaitable[R]],
        item_id: Callable[[T], str],
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> BatchOutcome[R]:
        """
        Run ``produce`` over every item and collect results and failures.

        ``timeout`` bounds the whole run. When it expires the in-flight item
        and everything after it are recorded as errors, so
        ``len(results) + len(errors) == len(items)`` on every path.
        """
        total = len(items)
        outcome: BatchOutcome[R] = BatchOutcome(total=total)
        started = time.monotonic()
        completed = 0
        in_flight = False

        try:
            async with asyncio.timeout(timeout):
                for batch_start in range(0, total, self.batch_size):
                    if batch_start > 0:
                        logger.info(
                            "Batch done (%d/%d), pausing %.1fs",
                            completed,
                            total,
                            self.batch_delay,
                        )
                        await self._sleep(self.batch_delay)

                    for item in items[batch_start : batch_start + self.batch_size]:
                        in_flight = True
                        await self._process(item, produce, item_id(item), outcome)
                        in_flight = False
                        completed += 1
                        if on_progress:
                            on_progress(completed, total)
        except TimeoutError:
            logger.error(
                "Batch run timed out after %d/%d items; skipping the rest",
                completed,
                total,
            )
            for pos, item in enumerate(items[completed:]):
                cut_short = in_flight and pos == 0
                outcome.errors.append(
                    ItemError(
                        item_id(item),
                        "cancelled: batch run timed out"
                        if cut_short
                        else "not attempted: batch run timed out",
                        attempts=1 if cut_short else 0,
                        attempted=cut_short,
                    )
                )

        outcome.elapsed_seconds = time.monotonic() - started
        return outcome
