"""Wires feed events to the position controller."""

from __future__ import annotations

from collections import deque
from typing import Callable

from pool_sniper.config import Settings
from pool_sniper.events import EventBus, NewCandidate, PositionClosed, WalletBalanceChanged
from pool_sniper.exec.interfaces import QuoteAccountCheck, Signer
from pool_sniper.positions.controller import PositionController
from pool_sniper.types import EntryOutcome, ExitOutcome
from pool_sniper.utils.logging import get_logger


class SniperBot:
    """Subscribes a controller to the candidate and wallet event streams."""

    def __init__(
        self,
        settings: Settings,
        controller: PositionController,
        bus: EventBus,
        *,
        signer: Signer,
        accounts: QuoteAccountCheck | None = None,
        history_size: int = 100,
    ) -> None:
        self._settings = settings
        self._controller = controller
        self._bus = bus
        self._signer = signer
        self._accounts = accounts
        self._unsubscribers: list[Callable[[], None]] = []
        self._logger = get_logger("pool_sniper.bot")
        # most recent outcomes only, for status output
        self.entries: deque[EntryOutcome] = deque(maxlen=history_size)
        self.exits: deque[ExitOutcome] = deque(maxlen=history_size)
        self.closed: deque[PositionClosed] = deque(maxlen=history_size)

    async def validate(self) -> bool:
        """The wallet must hold a quote token account before anything is bought."""
        if self._settings.is_paper_mode or self._accounts is None:
            return True
        try:
            exists = await self._accounts.quote_account_exists(
                self._signer.public_key,
                self._settings.quote_mint,
            )
        except Exception as exc:  # noqa: BLE001 - reported as a failed validation.
            self._logger.error("quote_account_check_failed", error=str(exc))
            return False
        if not exists:
            self._logger.error(
                "quote_account_missing",
                quote=self._settings.quote_symbol,
                wallet=self._signer.public_key,
            )
        return exists

    def start(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers.append(self._bus.subscribe(NewCandidate, self._on_candidate))
        if self._settings.auto_sell:
            self._unsubscribers.append(self._bus.subscribe(WalletBalanceChanged, self._on_wallet_change))
        self._unsubscribers.append(self._bus.subscribe(PositionClosed, self._on_position_closed))
        self._logger.info(
            "bot_started",
            mode=self._settings.mode.value,
            auto_sell=self._settings.auto_sell,
            one_token_at_a_time=self._settings.one_token_at_a_time,
            allow_list=self._settings.use_allow_list,
        )

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def _on_candidate(self, event: NewCandidate) -> None:
        self.entries.append(await self._controller.evaluate_and_enter(event.candidate))

    async def _on_wallet_change(self, event: WalletBalanceChanged) -> None:
        if event.mint == self._settings.quote_mint:
            return
        self.exits.append(await self._controller.evaluate_and_exit(event.mint, event.balance))

    async def _on_position_closed(self, event: PositionClosed) -> None:
        self.closed.append(event)
        self._logger.info(
            "position_closed",
            mint=event.mint,
            quote_proceeds=str(event.quote_proceeds),
            base_sold=str(event.base_sold),
        )
