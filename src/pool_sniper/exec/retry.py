"""Bounded submission retries."""

from __future__ import annotations

from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from pool_sniper.errors import PreconditionError
from pool_sniper.types import SubmissionOutcome, SwapResult
from pool_sniper.utils.logging import get_logger, log_swap_attempt, log_swap_result

Submit = Callable[[], Awaitable[SwapResult]]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, Exception) and not isinstance(exc, PreconditionError)


def _not_confirmed(result: SwapResult) -> bool:
    return not result.confirmed


async def submit_with_retries(
    submit: Submit,
    *,
    max_attempts: int,
    mint: str,
    direction: str,
    wait_ms: int = 0,
) -> SubmissionOutcome:
    """Call ``submit`` until it confirms or ``max_attempts`` calls were made.

    Exceptions and unconfirmed results are logged and retried. A
    ``PreconditionError`` is re-raised immediately. Exhausting the budget
    returns an unconfirmed outcome instead of raising.
    """
    logger = get_logger("pool_sniper.exec.retry")
    if max_attempts <= 0:
        return SubmissionOutcome(confirmed=False, attempts=0, error="no_attempts_configured")

    attempts = 0

    async def _attempt() -> SwapResult:
        nonlocal attempts
        attempts += 1
        log_swap_attempt(
            logger,
            mint=mint,
            direction=direction,
            attempt=attempts,
            max_attempts=max_attempts,
        )
        result = await submit()
        log_swap_result(
            logger,
            mint=mint,
            direction=direction,
            confirmed=result.confirmed,
            signature=result.signature,
            error=result.error,
        )
        return result

    def _log_failed_attempt(state: RetryCallState) -> None:
        if state.outcome is not None and state.outcome.failed:
            logger.debug(
                "swap_attempt_error",
                mint=mint,
                direction=direction,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            )

    def _exhausted(state: RetryCallState) -> SubmissionOutcome:
        last: SwapResult | None = None
        error = "unknown"
        if state.outcome is not None:
            if state.outcome.failed:
                error = str(state.outcome.exception())
            else:
                last = state.outcome.result()
                error = last.error or "not_confirmed"
        logger.warning(
            "swap_retries_exhausted",
            mint=mint,
            direction=direction,
            attempts=attempts,
            error=error,
        )
        return SubmissionOutcome(confirmed=False, attempts=attempts, result=last, error=error)

    retrying = AsyncRetrying(
        retry=retry_if_exception(_is_retryable) | retry_if_result(_not_confirmed),
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(wait_ms / 1000),
        after=_log_failed_attempt,
        retry_error_callback=_exhausted,
    )
    outcome = await retrying(_attempt)
    if isinstance(outcome, SubmissionOutcome):
        return outcome
    return SubmissionOutcome(confirmed=True, attempts=attempts, result=outcome)
