"""Typed publish/subscribe for pool, wallet and position events.

Each handler call runs in its own task, so events for different mints are
handled concurrently and in no guaranteed order. A failing handler is
logged and does not affect other handlers or the publisher.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar, Union

from pool_sniper.types import Candidate, TokenAmount
from pool_sniper.utils.logging import get_logger


@dataclass(frozen=True, slots=True)
class NewCandidate:
    candidate: Candidate

    @property
    def mint(self) -> str:
        return self.candidate.mint


@dataclass(frozen=True, slots=True)
class WalletBalanceChanged:
    mint: str
    balance: TokenAmount
    token_account: str = ""


@dataclass(frozen=True, slots=True)
class PositionClosed:
    """Emitted after the last sell of a position, for optional re-entry logic."""

    mint: str
    quote_proceeds: TokenAmount
    base_sold: TokenAmount


Event = Union[NewCandidate, WalletBalanceChanged, PositionClosed]
E = TypeVar("E", NewCandidate, WalletBalanceChanged, PositionClosed)
Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    """In-process event fan-out."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task[None]] = set()
        self._logger = get_logger("pool_sniper.events")

    def subscribe(self, event_type: type[E], handler: Callable[[E], Awaitable[None]]) -> Callable[[], None]:
        """Register ``handler``; returns a function that removes it."""
        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

        return _unsubscribe

    def publish(self, event: Event) -> list[asyncio.Task[None]]:
        """Schedule every handler for ``event``. Requires a running loop."""
        tasks = []
        for handler in list(self._handlers[type(event)]):
            task = asyncio.get_running_loop().create_task(self._dispatch(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no handler task is running, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _dispatch(self, handler: Handler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as exc:  # noqa: BLE001 - isolate handlers from each other.
            self._logger.exception(
                "event_handler_failed",
                event_type=type(event).__name__,
                mint=getattr(event, "mint", None),
                error=str(exc),
            )
