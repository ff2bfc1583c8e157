"""Narrow interfaces to the chain-facing collaborators."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from pool_sniper.types import (
    MarketInfo,
    PoolKeys,
    PoolState,
    SwapDirection,
    SwapQuote,
    SwapRequest,
    SwapResult,
    TokenAmount,
)


class Signer(Protocol):
    """Wallet keypair. Only its public key is visible to the core."""

    @property
    def public_key(self) -> str: ...


class MarketSource(Protocol):
    async def fetch_market_metadata(self, market_id: str) -> MarketInfo | None: ...


class PoolSource(Protocol):
    async def fetch_pool_state(self, mint: str) -> PoolState | None: ...


class SwapBackend(Protocol):
    """Prices and submits swaps.

    ``build_and_submit_swap`` must be safe to call again after an
    unconfirmed attempt without double-spending.
    """

    async def quote_swap(
        self,
        pool_keys: PoolKeys,
        amount_in: TokenAmount,
        direction: SwapDirection,
        slippage: Decimal,
    ) -> SwapQuote: ...

    async def build_and_submit_swap(self, request: SwapRequest, signer: Signer) -> SwapResult: ...


class QuoteAccountCheck(Protocol):
    async def quote_account_exists(self, owner: str, mint: str) -> bool: ...
