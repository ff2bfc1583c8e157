"""Live position registry, one record per mint."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from pool_sniper.types import PositionRecord, PositionState, TakeProfitPoint, TokenAmount


class PositionRegistry:
    """Owns the mint -> position map. Every transition is serialized by one lock."""

    def __init__(self) -> None:
        self._positions: dict[str, PositionRecord] = {}
        self._entry_settled: dict[str, asyncio.Event] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, mint: object) -> bool:
        return mint in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def get(self, mint: str) -> PositionRecord | None:
        return self._positions.get(mint)

    def active(self) -> list[PositionRecord]:
        return list(self._positions.values())

    async def reserve_entry(
        self,
        mint: str,
        *,
        pool_id: str,
        entry_quote: TokenAmount,
        base_decimals: int,
    ) -> PositionRecord | None:
        """Create a PENDING_ENTRY record, or ``None`` if the mint is already live."""
        async with self._lock:
            if mint in self._positions:
                return None
            record = PositionRecord(
                mint=mint,
                pool_id=pool_id,
                entry_quote=entry_quote,
                base_sold=TokenAmount.zero(base_decimals),
                quote_proceeds=entry_quote.with_raw(0),
            )
            self._positions[mint] = record
            self._entry_settled[mint] = asyncio.Event()
            return record

    async def open(
        self,
        mint: str,
        *,
        entry_base: TokenAmount,
        ladder: tuple[TakeProfitPoint, ...],
    ) -> PositionRecord:
        async with self._lock:
            record = self._require(mint, PositionState.PENDING_ENTRY)
            record.entry_base = entry_base
            record.base_sold = entry_base.with_raw(0)
            record.ladder = ladder
            record.state = PositionState.OPEN
            record.opened_at = datetime.now(timezone.utc).isoformat()
            self._settle(mint)
            return record

    async def adopt(
        self,
        mint: str,
        *,
        pool_id: str,
        entry_quote: TokenAmount,
        entry_base: TokenAmount,
        ladder: tuple[TakeProfitPoint, ...],
    ) -> PositionRecord | None:
        """Track a holding that was not bought by this process. ``None`` if already live."""
        async with self._lock:
            if mint in self._positions:
                return None
            record = PositionRecord(
                mint=mint,
                pool_id=pool_id,
                entry_quote=entry_quote,
                entry_base=entry_base,
                base_sold=entry_base.with_raw(0),
                quote_proceeds=entry_quote.with_raw(0),
                state=PositionState.OPEN,
                ladder=ladder,
                opened_at=datetime.now(timezone.utc).isoformat(),
            )
            self._positions[mint] = record
            return record

    async def discard(self, mint: str) -> None:
        """Drop a record whose entry failed or was skipped."""
        async with self._lock:
            self._positions.pop(mint, None)
            self._settle(mint)

    async def wait_for_entry(self, mint: str) -> PositionRecord | None:
        """Block until a pending entry for ``mint`` is opened or dropped."""
        event = self._entry_settled.get(mint)
        if event is not None:
            await event.wait()
        return self._positions.get(mint)

    async def begin_exit(self, mint: str) -> PositionRecord | None:
        """OPEN -> EXITING. ``None`` when the mint is absent or not OPEN."""
        async with self._lock:
            record = self._positions.get(mint)
            if record is None or record.state != PositionState.OPEN:
                return None
            record.state = PositionState.EXITING
            return record

    async def record_sale(self, mint: str, *, base: TokenAmount, quote: TokenAmount) -> PositionRecord:
        async with self._lock:
            record = self._require(mint, PositionState.EXITING)
            record.base_sold = record.base_sold + base
            record.quote_proceeds = record.quote_proceeds + quote
            return record

    async def end_exit(self, mint: str, *, closed: bool) -> PositionRecord | None:
        """EXITING -> CLOSED (and removed) or back to OPEN."""
        async with self._lock:
            record = self._positions.get(mint)
            if record is None or record.state != PositionState.EXITING:
                return record
            if closed:
                record.state = PositionState.CLOSED
                del self._positions[mint]
            else:
                record.state = PositionState.OPEN
            return record

    def _require(self, mint: str, state: PositionState) -> PositionRecord:
        record = self._positions.get(mint)
        if record is None:
            raise KeyError(f"no_position: {mint}")
        if record.state != state:
            raise RuntimeError(f"position_state_mismatch: {record.state.value} != {state.value}")
        return record

    def _settle(self, mint: str) -> None:
        event = self._entry_settled.pop(mint, None)
        if event is not None:
            event.set()
