"""Paper swap backend: fixed prices, every submission confirms."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pool_sniper.exec.interfaces import Signer
from pool_sniper.strategy.ladder import percent_of
from pool_sniper.types import PoolKeys, SwapDirection, SwapQuote, SwapRequest, SwapResult, TokenAmount


@dataclass(frozen=True, slots=True)
class PaperSigner:
    public_key: str = "paper-wallet"


class PaperSwapBackend:
    """Simulated execution priced at ``quote per whole base token``."""

    def __init__(self, *, default_price: Decimal = Decimal("0.0001")) -> None:
        if default_price <= 0:
            raise ValueError("price_must_be_positive")
        self._default_price = default_price
        self._prices: dict[str, Decimal] = {}
        self.swaps: list[dict[str, Any]] = []

    def set_price(self, mint: str, price: Decimal) -> None:
        if price <= 0:
            raise ValueError("price_must_be_positive")
        self._prices[mint] = price

    def price_of(self, mint: str) -> Decimal:
        return self._prices.get(mint, self._default_price)

    async def quote_swap(
        self,
        pool_keys: PoolKeys,
        amount_in: TokenAmount,
        direction: SwapDirection,
        slippage: Decimal,
    ) -> SwapQuote:
        price = self.price_of(pool_keys.base_mint)
        if direction == SwapDirection.BUY:
            out = TokenAmount.from_decimal(amount_in.to_decimal() / price, pool_keys.base_decimals)
        else:
            out = TokenAmount.from_decimal(amount_in.to_decimal() * price, pool_keys.quote_decimals)
        min_out = out.with_raw(out.raw - percent_of(out.raw, slippage))
        return SwapQuote(min_amount_out=min_out, price_amount_out=out)

    async def build_and_submit_swap(self, request: SwapRequest, signer: Signer) -> SwapResult:
        quote = await self.quote_swap(
            request.pool_keys,
            request.amount_in,
            request.direction,
            request.slippage,
        )
        signature = f"paper-{uuid.uuid4().hex[:16]}"
        self.swaps.append(
            {
                "signature": signature,
                "mint": request.pool_keys.base_mint,
                "direction": request.direction.value,
                "amount_in": str(request.amount_in),
                "amount_out": str(quote.price_amount_out),
                "priority_fee": request.priority_fee is not None,
                "owner": signer.public_key,
            }
        )
        return SwapResult(confirmed=True, signature=signature, amount_out=quote.price_amount_out)

    async def quote_account_exists(self, owner: str, mint: str) -> bool:
        return True
