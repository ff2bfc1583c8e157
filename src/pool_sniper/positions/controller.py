"""Entry and exit lifecycle for sniped positions."""

from __future__ import annotations

import asyncio
from contextlib import nullcontext
from dataclasses import replace
from decimal import Decimal
from typing import Any, AsyncContextManager

from pool_sniper.config import Settings
from pool_sniper.eligibility.allow_list import AllowList
from pool_sniper.eligibility.pipeline import FilterPipeline
from pool_sniper.errors import CollaboratorError, PreconditionError
from pool_sniper.events import EventBus, PositionClosed
from pool_sniper.exec.interfaces import MarketSource, PoolSource, Signer, SwapBackend
from pool_sniper.exec.retry import submit_with_retries
from pool_sniper.journal.store import JournalStore
from pool_sniper.positions.lanes import ExclusivityToken, SellInFlightCounter
from pool_sniper.positions.registry import PositionRegistry
from pool_sniper.scheduling.poller import Sleep, poll_until
from pool_sniper.strategy.ladder import ExitSignal, build_exit_ladder, evaluate_exit
from pool_sniper.types import (
    Candidate,
    EntryOutcome,
    EntryStatus,
    ExitOutcome,
    PoolKeys,
    PoolState,
    PositionRecord,
    PositionState,
    SwapDirection,
    SwapQuote,
    SwapRequest,
    SwapResult,
    TokenAmount,
)
from pool_sniper.utils.logging import get_logger, log_position_event


class PositionController:
    """Runs ``evaluate_and_enter`` / ``evaluate_and_exit`` for many mints at once.

    Failures are contained per mint and reported through the returned
    outcome; nothing raised for one mint reaches callers handling another.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        pools: PoolSource,
        markets: MarketSource,
        backend: SwapBackend,
        signer: Signer,
        pipeline: FilterPipeline | None = None,
        registry: PositionRegistry | None = None,
        allow_list: AllowList | None = None,
        bus: EventBus | None = None,
        journal: JournalStore | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._pools = pools
        self._markets = markets
        self._backend = backend
        self._signer = signer
        self._pipeline = pipeline or FilterPipeline(timeout_ms=settings.filter_timeout_ms)
        self._registry = registry or PositionRegistry()
        if settings.use_allow_list and allow_list is None:
            allow_list = AllowList.from_settings(settings)
        self._allow_list = allow_list
        self._bus = bus
        self._journal = journal
        self._sleep = sleep
        self._entry_lane = ExclusivityToken()
        self._sells = SellInFlightCounter()
        self._priority_fee = settings.priority_fee
        self._logger = get_logger("pool_sniper.positions.controller")

    @property
    def registry(self) -> PositionRegistry:
        return self._registry

    @property
    def entry_lane(self) -> ExclusivityToken:
        return self._entry_lane

    @property
    def sells_in_flight(self) -> int:
        return self._sells.count

    # ------------------------------------------------------------------ entry

    async def evaluate_and_enter(self, candidate: Candidate) -> EntryOutcome:
        """Decide on and execute a buy for ``candidate``."""
        mint = candidate.mint
        settings = self._settings

        if settings.use_allow_list and self._allow_list is not None and mint not in self._allow_list:
            return self._skip_entry(candidate, "skipped_not_in_allow_list")
        if mint in self._registry:
            return self._skip_entry(candidate, "skipped_duplicate")

        if settings.auto_buy_delay_ms > 0:
            self._logger.debug("buy_delay", mint=mint, delay_ms=settings.auto_buy_delay_ms)
            await self._sleep(settings.auto_buy_delay_ms / 1000)

        lane_held = False
        if settings.one_token_at_a_time:
            if self._sells.count > 0 or not await self._entry_lane.try_acquire():
                return self._skip_entry(candidate, "skipped_lane_busy")
            lane_held = True

        try:
            record = await self._registry.reserve_entry(
                mint,
                pool_id=candidate.pool_id,
                entry_quote=settings.quote_amount_units,
                base_decimals=candidate.pool_state.base_decimals,
            )
            if record is None:
                return self._skip_entry(candidate, "skipped_duplicate")

            log_position_event(self._logger, mint=mint, stage="buying", pool_id=candidate.pool_id)
            try:
                outcome = await self._enter(candidate)
            except PreconditionError as exc:
                self._logger.error("entry_precondition_failed", mint=mint, error=str(exc))
                outcome = EntryOutcome(status="failed_precondition", mint=mint, detail=str(exc))
            except Exception as exc:  # noqa: BLE001 - keep other mints running.
                self._logger.exception("entry_failed", mint=mint, error=str(exc))
                outcome = EntryOutcome(status="failed", mint=mint, detail=str(exc))

            if outcome.status != "opened":
                await self._registry.discard(mint)
        finally:
            if lane_held:
                self._entry_lane.release()

        self._journal_entry(outcome)
        return outcome

    async def _enter(self, candidate: Candidate) -> EntryOutcome:
        mint = candidate.mint
        settings = self._settings
        pool_keys = await self._resolve_pool_keys(candidate.pool_state)

        verdict = None
        if not settings.use_allow_list:
            match = await self._pipeline.debounced_match(
                candidate,
                interval_ms=settings.filter_check_interval_ms,
                duration_ms=settings.filter_check_duration_ms,
                required_matches=settings.consecutive_filter_matches,
                sleep=self._sleep,
            )
            verdict = match.value
            if not match.matched:
                self._logger.debug("buy_skipped_filters", mint=mint, runs=match.attempts_run)
                return EntryOutcome(status="skipped_ineligible", mint=mint, verdict=verdict)

        amount_in = settings.quote_amount_units
        submission = await submit_with_retries(
            lambda: self._swap(pool_keys, amount_in, SwapDirection.BUY, settings.buy_slippage),
            max_attempts=settings.max_buy_retries,
            mint=mint,
            direction=SwapDirection.BUY.value,
            wait_ms=settings.retry_wait_ms,
        )
        if not submission.confirmed or submission.result is None:
            return EntryOutcome(
                status="failed",
                mint=mint,
                verdict=verdict,
                attempts=submission.attempts,
                detail=submission.error or "not_confirmed",
            )

        entry_base = submission.result.amount_out
        if entry_base is None:
            raise PreconditionError("entry_amount_unknown")
        ladder = build_exit_ladder(amount_in, entry_base, settings.take_profit)
        position = await self._registry.open(mint, entry_base=entry_base, ladder=ladder)
        log_position_event(
            self._logger,
            mint=mint,
            stage="opened",
            signature=submission.result.signature,
            entry_quote=str(amount_in),
            entry_base=str(entry_base),
            ladder_points=len(ladder),
        )
        return EntryOutcome(
            status="opened",
            mint=mint,
            position=position,
            verdict=verdict,
            attempts=submission.attempts,
            detail=submission.result.signature or "",
        )

    # ------------------------------------------------------------------- exit

    async def evaluate_and_exit(self, mint: str, observed_balance: TokenAmount) -> ExitOutcome:
        """Watch the price of a held ``mint`` and sell when an exit rule fires."""
        tracker: AsyncContextManager[Any] = (
            self._sells.track() if self._settings.one_token_at_a_time else nullcontext()
        )
        async with tracker:
            outcome = await self._exit_guarded(mint, observed_balance)
        self._journal_exit(outcome)
        return outcome

    async def _exit_guarded(self, mint: str, observed_balance: TokenAmount) -> ExitOutcome:
        if observed_balance.is_zero():
            self._logger.info("sell_skipped_empty_balance", mint=mint)
            return ExitOutcome(status="skipped_no_balance", mint=mint)

        try:
            pool_state = await self._pools.fetch_pool_state(mint)
        except Exception as exc:  # noqa: BLE001 - lookup failure is scoped to this mint.
            self._logger.error("pool_lookup_failed", mint=mint, error=str(exc))
            return ExitOutcome(status="failed", mint=mint, detail=str(exc))
        if pool_state is None:
            self._logger.debug("sell_skipped_no_pool", mint=mint)
            return ExitOutcome(status="skipped_no_pool", mint=mint)

        existing = self._registry.get(mint)
        if existing is not None and existing.state == PositionState.PENDING_ENTRY:
            existing = await self._registry.wait_for_entry(mint)
        if existing is None:
            await self._adopt_holding(mint, pool_state, observed_balance)

        position = await self._registry.begin_exit(mint)
        if position is None:
            self._logger.debug("sell_skipped_busy", mint=mint)
            return ExitOutcome(status="skipped_busy", mint=mint)

        closed = False
        try:
            outcome = await self._exit(position, pool_state, observed_balance)
            closed = outcome.status == "closed"
        except PreconditionError as exc:
            self._logger.error("exit_precondition_failed", mint=mint, error=str(exc))
            outcome = ExitOutcome(status="failed_precondition", mint=mint, detail=str(exc))
        except Exception as exc:  # noqa: BLE001 - keep other mints running.
            self._logger.exception("exit_failed", mint=mint, error=str(exc))
            outcome = ExitOutcome(status="failed", mint=mint, detail=str(exc))
        finally:
            await self._registry.end_exit(mint, closed=closed)

        if closed and self._bus is not None:
            self._bus.publish(
                PositionClosed(
                    mint=mint,
                    quote_proceeds=position.quote_proceeds,
                    base_sold=position.base_sold,
                )
            )
        return outcome

    async def _exit(
        self,
        position: PositionRecord,
        pool_state: PoolState,
        held: TokenAmount,
    ) -> ExitOutcome:
        mint = position.mint
        settings = self._settings

        if settings.auto_sell_delay_ms > 0:
            self._logger.debug("sell_delay", mint=mint, delay_ms=settings.auto_sell_delay_ms)
            await self._sleep(settings.auto_sell_delay_ms / 1000)

        pool_keys = await self._resolve_pool_keys(pool_state)
        signal = await self._watch_price(position, pool_keys, held)
        log_position_event(
            self._logger,
            mint=mint,
            stage="selling",
            reason=signal.reason,
            amount=str(signal.amount),
            observed_quote=str(signal.observed_quote) if signal.observed_quote else None,
        )

        submission = await submit_with_retries(
            lambda: self._swap(pool_keys, signal.amount, SwapDirection.SELL, settings.sell_slippage),
            max_attempts=settings.max_sell_retries,
            mint=mint,
            direction=SwapDirection.SELL.value,
            wait_ms=settings.retry_wait_ms,
        )
        if not submission.confirmed or submission.result is None:
            return ExitOutcome(
                status="failed",
                mint=mint,
                reason=signal.reason,
                attempts=submission.attempts,
                detail=submission.error or "not_confirmed",
            )

        proceeds = submission.result.amount_out or TokenAmount.zero(pool_keys.quote_decimals)
        await self._registry.record_sale(mint, base=signal.amount, quote=proceeds)
        closed = signal.amount >= held
        log_position_event(
            self._logger,
            mint=mint,
            stage="closed" if closed else "partially_sold",
            signature=submission.result.signature,
            base_sold=str(position.base_sold),
            quote_proceeds=str(position.quote_proceeds),
        )
        return ExitOutcome(
            status="closed" if closed else "sold_partial",
            mint=mint,
            reason=signal.reason,
            base_sold=signal.amount,
            quote_proceeds=proceeds,
            attempts=submission.attempts,
            detail=submission.result.signature or "",
        )

    async def _watch_price(self, position: PositionRecord, pool_keys: PoolKeys, held: TokenAmount) -> ExitSignal:
        """Poll the pool until take-profit or stop-loss fires; sell everything on timeout."""
        settings = self._settings
        entry_base = position.entry_base or held

        async def _check() -> ExitSignal | None:
            quote = await self._quote(pool_keys, entry_base, SwapDirection.SELL, settings.sell_slippage)
            signal = evaluate_exit(
                ladder=position.ladder,
                entry_quote=position.entry_quote,
                observed_quote=quote.price_amount_out,
                held=held,
                already_sold=position.base_sold,
                stop_loss_pct=settings.stop_loss_pct,
            )
            self._logger.debug(
                "price_check",
                mint=position.mint,
                observed_quote=str(quote.price_amount_out),
                entry_quote=str(position.entry_quote),
                signal=signal.reason if signal else None,
            )
            return signal

        outcome = await poll_until(
            settings.price_check_interval_ms,
            settings.price_check_duration_ms,
            _check,
            sleep=self._sleep,
            label="price_check",
            mint=position.mint,
        )
        if outcome.matched:
            return outcome.value
        return ExitSignal(reason="time_limit", amount=held)

    async def _adopt_holding(self, mint: str, pool_state: PoolState, held: TokenAmount) -> None:
        entry_quote = self._settings.quote_amount_units
        ladder = build_exit_ladder(entry_quote, held, self._settings.take_profit)
        adopted = await self._registry.adopt(
            mint,
            pool_id=pool_state.pool_id,
            entry_quote=entry_quote,
            entry_base=held,
            ladder=ladder,
        )
        if adopted is not None:
            log_position_event(self._logger, mint=mint, stage="adopted", entry_base=str(held))

    # ---------------------------------------------------------------- helpers

    async def _swap(
        self,
        pool_keys: PoolKeys,
        amount_in: TokenAmount,
        direction: SwapDirection,
        slippage: Decimal,
    ) -> SwapResult:
        """One quote + submit attempt."""
        quote = await self._quote(pool_keys, amount_in, direction, slippage)
        request = SwapRequest(
            pool_keys=pool_keys,
            amount_in=amount_in,
            direction=direction,
            slippage=slippage,
            min_amount_out=quote.min_amount_out,
            priority_fee=self._priority_fee,
        )
        result = await self._backend.build_and_submit_swap(request, self._signer)
        if result.confirmed and result.amount_out is None:
            result = replace(result, amount_out=quote.price_amount_out)
        return result

    async def _quote(
        self,
        pool_keys: PoolKeys,
        amount_in: TokenAmount,
        direction: SwapDirection,
        slippage: Decimal,
    ) -> SwapQuote:
        """Quote bounded by ``quote_timeout_ms``; a stalled RPC becomes a retryable error."""
        timeout_ms = self._settings.quote_timeout_ms
        try:
            return await asyncio.wait_for(
                self._backend.quote_swap(pool_keys, amount_in, direction, slippage),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError as exc:
            raise CollaboratorError(f"quote timed out after {timeout_ms} ms") from exc

    async def _resolve_pool_keys(self, state: PoolState) -> PoolKeys:
        if state.quote_mint != self._settings.quote_mint:
            raise PreconditionError(f"quote_mint_mismatch: {state.quote_mint}")
        if state.quote_decimals != self._settings.quote_decimals:
            raise PreconditionError(f"quote_decimals_mismatch: {state.quote_decimals}")
        market = await self._markets.fetch_market_metadata(state.market_id)
        if market is None:
            raise PreconditionError(f"market_not_found: {state.market_id}")
        return PoolKeys.from_state(state, market)

    def _skip_entry(self, candidate: Candidate, status: EntryStatus) -> EntryOutcome:
        self._logger.debug("buy_skipped", mint=candidate.mint, reason=status)
        outcome = EntryOutcome(status=status, mint=candidate.mint)
        self._journal_entry(outcome)
        return outcome

    def _journal_entry(self, outcome: EntryOutcome) -> None:
        if self._journal is None:
            return
        if outcome.status == "opened" and outcome.position is not None:
            self._write_journal("entry_confirmed", outcome.mint, **outcome.position.snapshot())
        elif outcome.status.startswith("skipped"):
            payload: dict[str, Any] = {"status": outcome.status}
            if outcome.verdict is not None:
                payload["failed_filters"] = outcome.verdict.failed_filters
            self._write_journal("entry_skipped", outcome.mint, **payload)
        else:
            self._write_journal(
                "entry_failed",
                outcome.mint,
                status=outcome.status,
                attempts=outcome.attempts,
                detail=outcome.detail,
            )

    def _journal_exit(self, outcome: ExitOutcome) -> None:
        if self._journal is None:
            return
        if outcome.status in ("closed", "sold_partial"):
            self._write_journal(
                "exit_confirmed",
                outcome.mint,
                status=outcome.status,
                reason=outcome.reason,
                base_sold=outcome.base_sold,
                quote_proceeds=outcome.quote_proceeds,
                signature=outcome.detail,
            )
            if outcome.status == "closed":
                self._write_journal("position_closed", outcome.mint, reason=outcome.reason)
        elif outcome.status.startswith("skipped"):
            self._write_journal("exit_skipped", outcome.mint, status=outcome.status)
        else:
            self._write_journal(
                "exit_failed",
                outcome.mint,
                status=outcome.status,
                attempts=outcome.attempts,
                detail=outcome.detail,
            )

    def _write_journal(self, event_type: str, mint: str, **payload: Any) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record(event_type, mint, **payload)
        except OSError as exc:
            self._logger.exception("journal_write_failed", mint=mint, event_type=event_type, error=str(exc))
