"""Fixed-interval polling shared by filter debounce and price exit checks."""

from __future__ import annotations

import asyncio
import math
from typing import Any, Awaitable, Callable

from pool_sniper.types import PollOutcome
from pool_sniper.utils.logging import get_logger

Predicate = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


async def poll_until(
    interval_ms: int,
    duration_ms: int,
    predicate: Predicate,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = "poll",
    **log_context: Any,
) -> PollOutcome:
    """Await ``predicate`` every ``interval_ms`` for at most ``duration_ms``.

    A truthy predicate result is a match and stops the loop; the result is
    returned as ``PollOutcome.value``. A zero interval or duration disables
    polling entirely: the predicate is never called.

    A predicate that raises counts as a non-match for that run. At most
    ``ceil(duration_ms / interval_ms)`` runs happen and there is no sleep
    after the last one.
    """
    if interval_ms <= 0 or duration_ms <= 0:
        return PollOutcome(matched=False, attempts_run=0)

    logger = get_logger("pool_sniper.scheduling.poller")
    max_runs = math.ceil(duration_ms / interval_ms)

    for run in range(1, max_runs + 1):
        try:
            value = await predicate()
        except Exception as exc:  # noqa: BLE001 - a failed check is just a miss.
            logger.debug(
                "poll_predicate_failed",
                label=label,
                run=run,
                max_runs=max_runs,
                error=str(exc),
                **log_context,
            )
            value = None

        if value:
            return PollOutcome(matched=True, attempts_run=run, value=value)

        if run < max_runs:
            await sleep(interval_ms / 1000)

    return PollOutcome(matched=False, attempts_run=max_runs)
