from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

import pytest

from pool_sniper.config import Settings
from pool_sniper.data.cache import MarketCache, PoolCache
from pool_sniper.eligibility.allow_list import AllowList
from pool_sniper.eligibility.pipeline import FilterPipeline
from pool_sniper.errors import CollaboratorError
from pool_sniper.events import EventBus, PositionClosed
from pool_sniper.exec.paper import PaperSigner
from pool_sniper.journal.store import JournalStore
from pool_sniper.positions.controller import PositionController
from pool_sniper.types import (
    Candidate,
    FilterResult,
    MarketInfo,
    PoolKeys,
    PoolState,
    PositionState,
    PriorityFee,
    SwapDirection,
    SwapQuote,
    SwapRequest,
    SwapResult,
    TokenAmount,
)

QUOTE_MINT = "So11111111111111111111111111111111111111112"


class FakeBackend:
    """Buys return 10 base per quote unit; sells are worth ``values[mint]`` per 1000 base."""

    def __init__(self) -> None:
        self.values: dict[str, int] = {}
        self.script: list[bool | Exception] = []
        self.requests: list[SwapRequest] = []
        self.sell_gate: asyncio.Event | None = None

    async def quote_swap(
        self,
        pool_keys: PoolKeys,
        amount_in: TokenAmount,
        direction: SwapDirection,
        slippage: Decimal,
    ) -> SwapQuote:
        if direction == SwapDirection.BUY:
            out = TokenAmount(amount_in.raw * 10, pool_keys.base_decimals)
        else:
            if self.sell_gate is not None:
                await self.sell_gate.wait()
            value = self.values.get(pool_keys.base_mint, 100)
            out = TokenAmount(value * amount_in.raw // 1000, pool_keys.quote_decimals)
        return SwapQuote(min_amount_out=out, price_amount_out=out)

    async def build_and_submit_swap(self, request: SwapRequest, signer: Any) -> SwapResult:
        self.requests.append(request)
        step = self.script.pop(0) if self.script else True
        if isinstance(step, Exception):
            raise step
        if not step:
            return SwapResult(confirmed=False, error="blockhash expired")
        return SwapResult(confirmed=True, signature=f"sig-{len(self.requests)}")

    def submitted(self, direction: SwapDirection) -> list[SwapRequest]:
        return [r for r in self.requests if r.direction == direction]


class GatedFilter:
    name = "gated"

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def check(self, candidate: Candidate) -> FilterResult:
        self.entered.set()
        await self.gate.wait()
        return FilterResult(ok=True)


class RejectingFilter:
    name = "never"

    async def check(self, candidate: Candidate) -> FilterResult:
        return FilterResult(ok=False, detail="pool too small")


async def _no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


async def _until(condition: Callable[[], bool]) -> None:
    for _ in range(200):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def _settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "journal_dir": tmp_path / "journal",
        "quote_decimals": 0,
        "quote_amount": Decimal(100),
        "filter_check_interval_ms": 10,
        "filter_check_duration_ms": 10,
        "consecutive_filter_matches": 1,
        "price_check_interval_ms": 10,
        "price_check_duration_ms": 50,
        "max_buy_retries": 3,
        "max_sell_retries": 3,
    }
    values.update(overrides)
    return Settings(**values)


def _pool(mint: str, *, quote_mint: str = QUOTE_MINT) -> PoolState:
    return PoolState(
        pool_id=f"pool-{mint}",
        base_mint=mint,
        quote_mint=quote_mint,
        base_decimals=0,
        quote_decimals=0,
        market_id=f"market-{mint}",
    )


class Harness:
    def __init__(
        self,
        settings: Settings,
        *,
        filters: list[Any] | None = None,
        allow_list: AllowList | None = None,
        journal: JournalStore | None = None,
    ) -> None:
        self.pools = PoolCache()
        self.markets = MarketCache()
        self.backend = FakeBackend()
        self.bus = EventBus()
        self.closed: list[PositionClosed] = []
        self.controller = PositionController(
            settings,
            pools=self.pools,
            markets=self.markets,
            backend=self.backend,
            signer=PaperSigner(),
            pipeline=FilterPipeline(filters or []),
            allow_list=allow_list,
            bus=self.bus,
            journal=journal,
            sleep=_no_sleep,
        )

        async def _collect(event: PositionClosed) -> None:
            self.closed.append(event)

        self.bus.subscribe(PositionClosed, _collect)

    def listed(self, mint: str, *, with_market: bool = True) -> Candidate:
        state = _pool(mint)
        self.pools.save(state)
        if with_market:
            self.markets.save(MarketInfo(market_id=state.market_id))
        return Candidate.from_pool_state(state)


def test_entry_opens_position_with_ladder(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        outcome = await h.controller.evaluate_and_enter(h.listed("MintA"))

        assert outcome.status == "opened"
        position = outcome.position
        assert position is not None
        assert position.state == PositionState.OPEN
        assert position.entry_quote.raw == 100
        assert position.entry_base == TokenAmount(1000, 0)
        assert [p.quote_threshold.raw for p in position.ladder] == [130, 120, 110]
        assert [p.base_to_sell.raw for p in position.ladder] == [300, 300, 400]
        assert not h.controller.entry_lane.locked()

    asyncio.run(scenario())


def test_duplicate_candidate_is_skipped(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        candidate = h.listed("MintA")
        assert (await h.controller.evaluate_and_enter(candidate)).status == "opened"
        assert (await h.controller.evaluate_and_enter(candidate)).status == "skipped_duplicate"
        assert len(h.backend.submitted(SwapDirection.BUY)) == 1

    asyncio.run(scenario())


def test_single_lane_rejects_second_entry_while_first_is_running(tmp_path: Path) -> None:
    async def scenario() -> None:
        gated = GatedFilter()
        h = Harness(_settings(tmp_path), filters=[gated])
        first = asyncio.create_task(h.controller.evaluate_and_enter(h.listed("MintA")))
        await gated.entered.wait()

        second = await h.controller.evaluate_and_enter(h.listed("MintB"))
        assert second.status == "skipped_lane_busy"
        assert "MintB" not in h.controller.registry

        gated.gate.set()
        assert (await first).status == "opened"
        assert not h.controller.entry_lane.locked()

    asyncio.run(scenario())


def test_without_single_lane_entries_run_concurrently(tmp_path: Path) -> None:
    async def scenario() -> None:
        gated = GatedFilter()
        h = Harness(_settings(tmp_path, one_token_at_a_time=False), filters=[gated])
        first = asyncio.create_task(h.controller.evaluate_and_enter(h.listed("MintA")))
        second = asyncio.create_task(h.controller.evaluate_and_enter(h.listed("MintB")))
        await gated.entered.wait()
        gated.gate.set()

        results = await asyncio.gather(first, second)
        assert [r.status for r in results] == ["opened", "opened"]
        assert len(h.controller.registry) == 2

    asyncio.run(scenario())


def test_buy_stops_after_max_attempts(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        h.backend.script = [False] * 10
        outcome = await h.controller.evaluate_and_enter(h.listed("MintA"))

        assert outcome.status == "failed"
        assert outcome.attempts == 3
        assert len(h.backend.submitted(SwapDirection.BUY)) == 3
        assert "MintA" not in h.controller.registry
        assert not h.controller.entry_lane.locked()

    asyncio.run(scenario())


def test_buy_retries_through_transient_errors(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        h.backend.script = [CollaboratorError("rpc timeout"), False, True]
        outcome = await h.controller.evaluate_and_enter(h.listed("MintA"))

        assert outcome.status == "opened"
        assert outcome.attempts == 3

    asyncio.run(scenario())


def test_missing_market_fails_only_that_mint(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        failed = await h.controller.evaluate_and_enter(h.listed("MintA", with_market=False))
        opened = await h.controller.evaluate_and_enter(h.listed("MintB"))

        assert failed.status == "failed_precondition"
        assert "market_not_found" in failed.detail
        assert opened.status == "opened"
        assert h.backend.submitted(SwapDirection.BUY)[0].pool_keys.base_mint == "MintB"

    asyncio.run(scenario())


def test_foreign_quote_mint_is_a_precondition_failure(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        state = _pool("MintA", quote_mint="UsdcMint")
        h.pools.save(state)
        h.markets.save(MarketInfo(market_id=state.market_id))
        outcome = await h.controller.evaluate_and_enter(Candidate.from_pool_state(state))
        assert outcome.status == "failed_precondition"
        assert h.backend.requests == []

    asyncio.run(scenario())


def test_ineligible_candidate_is_journaled_with_failed_filters(tmp_path: Path) -> None:
    async def scenario() -> None:
        journal = JournalStore(tmp_path / "journal")
        h = Harness(_settings(tmp_path), filters=[RejectingFilter()], journal=journal)
        outcome = await h.controller.evaluate_and_enter(h.listed("MintA"))

        assert outcome.status == "skipped_ineligible"
        assert "MintA" not in h.controller.registry
        rows = journal.load_recent(5, mint="MintA")
        assert rows[-1]["event_type"] == "entry_skipped"
        assert rows[-1]["payload"]["failed_filters"] == ["never"]

    asyncio.run(scenario())


def test_partial_take_profit_then_close(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))

        h.backend.values["MintA"] = 125
        partial = await h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0))
        assert partial.status == "sold_partial"
        assert partial.reason == "take_profit"
        assert partial.base_sold == TokenAmount(700, 0)
        position = h.controller.registry.get("MintA")
        assert position is not None
        assert position.state == PositionState.OPEN
        assert position.base_sold.raw == 700

        h.backend.values["MintA"] = 135
        final = await h.controller.evaluate_and_exit("MintA", TokenAmount(300, 0))
        assert final.status == "closed"
        assert final.base_sold == TokenAmount(300, 0)
        assert "MintA" not in h.controller.registry

        await h.bus.drain()
        assert len(h.closed) == 1
        assert h.closed[0].base_sold == TokenAmount(1000, 0)
        assert h.closed[0].quote_proceeds == TokenAmount(87 + 40, 0)
        assert h.controller.sells_in_flight == 0

    asyncio.run(scenario())


def test_sell_is_clamped_to_wallet_balance(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        h.backend.values["MintA"] = 125

        outcome = await h.controller.evaluate_and_exit("MintA", TokenAmount(650, 0))
        assert outcome.status == "closed"
        assert outcome.base_sold == TokenAmount(650, 0)
        assert h.backend.submitted(SwapDirection.SELL)[0].amount_in.raw == 650

    asyncio.run(scenario())


def test_stop_loss_sells_everything(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        h.backend.values["MintA"] = 79

        outcome = await h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0))
        assert outcome.status == "closed"
        assert outcome.reason == "stop_loss"
        assert outcome.base_sold == TokenAmount(1000, 0)

    asyncio.run(scenario())


def test_price_watch_timeout_sells_everything(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        h.backend.values["MintA"] = 105

        outcome = await h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0))
        assert outcome.status == "closed"
        assert outcome.reason == "time_limit"
        assert outcome.base_sold == TokenAmount(1000, 0)

    asyncio.run(scenario())


def test_zero_balance_and_unknown_pool_are_skipped(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))

        empty = await h.controller.evaluate_and_exit("MintA", TokenAmount(0, 0))
        unknown = await h.controller.evaluate_and_exit("NoPool", TokenAmount(10, 0))
        assert empty.status == "skipped_no_balance"
        assert unknown.status == "skipped_no_pool"
        assert h.backend.submitted(SwapDirection.SELL) == []

    asyncio.run(scenario())


def test_sell_retries_are_bounded(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        h.backend.values["MintA"] = 79
        h.backend.script = [False] * 10

        outcome = await h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0))
        assert outcome.status == "failed"
        assert outcome.attempts == 3
        position = h.controller.registry.get("MintA")
        assert position is not None
        assert position.state == PositionState.OPEN

    asyncio.run(scenario())


def test_sell_in_flight_blocks_new_entries(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        h.backend.values["MintA"] = 79
        h.backend.sell_gate = asyncio.Event()

        selling = asyncio.create_task(h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0)))
        await _until(lambda: h.controller.sells_in_flight == 1)

        blocked = await h.controller.evaluate_and_enter(h.listed("MintB"))
        assert blocked.status == "skipped_lane_busy"

        h.backend.sell_gate.set()
        assert (await selling).status == "closed"
        assert h.controller.sells_in_flight == 0

        retried = await h.controller.evaluate_and_enter(Candidate.from_pool_state(_pool("MintB")))
        assert retried.status == "opened"

    asyncio.run(scenario())


def test_second_exit_for_same_mint_is_rejected(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        h.backend.values["MintA"] = 79
        h.backend.sell_gate = asyncio.Event()

        first = asyncio.create_task(h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0)))
        await _until(lambda: h.controller.sells_in_flight == 1)
        second = await h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0))
        assert second.status == "skipped_busy"

        h.backend.sell_gate.set()
        assert (await first).status == "closed"
        assert len(h.backend.submitted(SwapDirection.SELL)) == 1

    asyncio.run(scenario())


def test_exit_waits_for_pending_entry(tmp_path: Path) -> None:
    async def scenario() -> None:
        gated = GatedFilter()
        h = Harness(_settings(tmp_path), filters=[gated])
        h.backend.values["MintA"] = 125

        entering = asyncio.create_task(h.controller.evaluate_and_enter(h.listed("MintA")))
        await gated.entered.wait()
        exiting = asyncio.create_task(h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0)))
        await _until(lambda: h.controller.sells_in_flight == 1)
        assert not exiting.done()

        gated.gate.set()
        assert (await entering).status == "opened"
        outcome = await exiting
        assert outcome.status == "sold_partial"
        assert outcome.base_sold == TokenAmount(700, 0)

    asyncio.run(scenario())


def test_untracked_holding_is_adopted(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path))
        h.listed("MintA")
        h.backend.values["MintA"] = 125

        outcome = await h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0))
        assert outcome.status == "sold_partial"
        position = h.controller.registry.get("MintA")
        assert position is not None
        assert position.entry_quote.raw == 100
        assert position.entry_base == TokenAmount(1000, 0)

    asyncio.run(scenario())


@pytest.mark.parametrize(
    ("executor", "expected"),
    [
        ("default", PriorityFee(unit_limit=101_337, unit_price=421_197)),
        ("warp", None),
        ("jito", None),
    ],
)
def test_priority_fee_follows_executor(tmp_path: Path, executor: str, expected: PriorityFee | None) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path, transaction_executor=executor))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        assert h.backend.requests[0].priority_fee == expected

    asyncio.run(scenario())


def test_allow_list_bypasses_filters(tmp_path: Path) -> None:
    async def scenario() -> None:
        path = tmp_path / "snipe-list.txt"
        path.write_text("# listed\nMintA\n", encoding="utf-8")
        settings = _settings(tmp_path, use_allow_list=True, allow_list_path=path)
        h = Harness(settings, filters=[RejectingFilter()], allow_list=AllowList(path))

        assert (await h.controller.evaluate_and_enter(h.listed("MintA"))).status == "opened"
        assert (await h.controller.evaluate_and_enter(h.listed("MintB"))).status == "skipped_not_in_allow_list"

    asyncio.run(scenario())


def test_allow_list_is_built_from_settings(tmp_path: Path) -> None:
    async def scenario() -> None:
        path = tmp_path / "snipe-list.txt"
        path.write_text("MintA\n", encoding="utf-8")
        settings = _settings(tmp_path, use_allow_list=True, allow_list_path=path, allow_list_refresh_ms=0)
        h = Harness(settings, filters=[RejectingFilter()])

        assert (await h.controller.evaluate_and_enter(h.listed("MintB"))).status == "skipped_not_in_allow_list"
        path.write_text("MintA\nMintB\n", encoding="utf-8")
        assert (await h.controller.evaluate_and_enter(h.listed("MintB"))).status == "opened"

    asyncio.run(scenario())


def test_stalled_quote_does_not_hold_the_lane(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path, quote_timeout_ms=20, max_sell_retries=2))
        await h.controller.evaluate_and_enter(h.listed("MintA"))
        h.backend.sell_gate = asyncio.Event()

        outcome = await asyncio.wait_for(
            h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0)),
            timeout=5,
        )
        assert outcome.status == "failed"
        assert outcome.reason == "time_limit"
        assert outcome.attempts == 2
        assert "timed out" in outcome.detail
        assert h.controller.sells_in_flight == 0
        position = h.controller.registry.get("MintA")
        assert position is not None
        assert position.state == PositionState.OPEN

        assert (await h.controller.evaluate_and_enter(h.listed("MintB"))).status == "opened"

    asyncio.run(scenario())


class _FullDiskJournal(JournalStore):
    def record(self, event_type: str, mint: str, **payload: Any) -> None:
        raise OSError(28, "No space left on device")


def test_journal_write_errors_do_not_hide_outcomes(tmp_path: Path) -> None:
    async def scenario() -> None:
        h = Harness(_settings(tmp_path), journal=_FullDiskJournal(tmp_path / "journal"))
        entry = await h.controller.evaluate_and_enter(h.listed("MintA"))
        assert entry.status == "opened"

        h.backend.values["MintA"] = 79
        exit_outcome = await h.controller.evaluate_and_exit("MintA", TokenAmount(1000, 0))
        assert exit_outcome.status == "closed"
        assert h.controller.sells_in_flight == 0

    asyncio.run(scenario())
