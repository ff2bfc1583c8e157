"""In-memory pool and market lookups fed by the listeners."""

from __future__ import annotations

from pool_sniper.types import MarketInfo, PoolState
from pool_sniper.utils.logging import get_logger


class PoolCache:
    """Pool snapshots by base mint. The first pool seen for a mint wins."""

    def __init__(self) -> None:
        self._pools: dict[str, PoolState] = {}
        self._logger = get_logger("pool_sniper.data.cache")

    def __len__(self) -> int:
        return len(self._pools)

    def save(self, state: PoolState) -> bool:
        if state.base_mint in self._pools:
            return False
        self._logger.debug("pool_cached", mint=state.base_mint, pool_id=state.pool_id)
        self._pools[state.base_mint] = state
        return True

    async def fetch_pool_state(self, mint: str) -> PoolState | None:
        return self._pools.get(mint)


class MarketCache:
    """Market metadata by market id. Unknown markets return ``None``."""

    def __init__(self) -> None:
        self._markets: dict[str, MarketInfo] = {}

    def __len__(self) -> int:
        return len(self._markets)

    def save(self, market: MarketInfo) -> None:
        self._markets[market.market_id] = market

    async def fetch_market_metadata(self, market_id: str) -> MarketInfo | None:
        return self._markets.get(market_id)
