"""Shared domain types for the sniping control loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from functools import total_ordering
from typing import Any, Literal, Mapping


@total_ordering
@dataclass(frozen=True, slots=True)
class TokenAmount:
    """Integer amount of a token in its smallest unit."""

    raw: int
    decimals: int

    def __post_init__(self) -> None:
        if self.decimals < 0:
            raise ValueError("decimals_must_be_non_negative")
        if self.raw < 0:
            raise ValueError("amount_must_be_non_negative")

    @classmethod
    def zero(cls, decimals: int) -> TokenAmount:
        return cls(raw=0, decimals=decimals)

    @classmethod
    def from_decimal(cls, value: Decimal | str | int, decimals: int) -> TokenAmount:
        """Convert a human amount (e.g. ``"0.01"``) to raw units, truncating extra precision."""
        if isinstance(value, float):
            raise TypeError("float_amounts_not_supported")
        scaled = (Decimal(value) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
        return cls(raw=int(scaled), decimals=decimals)

    def to_decimal(self) -> Decimal:
        return Decimal(self.raw).scaleb(-self.decimals)

    def is_zero(self) -> bool:
        return self.raw == 0

    def with_raw(self, raw: int) -> TokenAmount:
        return TokenAmount(raw=raw, decimals=self.decimals)

    def _check(self, other: TokenAmount) -> None:
        if not isinstance(other, TokenAmount):
            raise TypeError(f"cannot combine TokenAmount with {type(other).__name__}")
        if other.decimals != self.decimals:
            raise ValueError(f"decimals_mismatch: {self.decimals} != {other.decimals}")

    def __add__(self, other: TokenAmount) -> TokenAmount:
        self._check(other)
        return self.with_raw(self.raw + other.raw)

    def __sub__(self, other: TokenAmount) -> TokenAmount:
        self._check(other)
        return self.with_raw(self.raw - other.raw)

    def __lt__(self, other: TokenAmount) -> bool:
        self._check(other)
        return self.raw < other.raw

    def __str__(self) -> str:
        return format(self.to_decimal(), "f")


@dataclass(frozen=True, slots=True)
class PriorityFee:
    """Compute budget settings added when the submitter does not pay priority itself."""

    unit_limit: int
    unit_price: int


@dataclass(frozen=True, slots=True)
class PoolState:
    """Snapshot of an AMM pool account. A re-fetch produces a new snapshot."""

    pool_id: str
    base_mint: str
    quote_mint: str
    base_decimals: int
    quote_decimals: int
    market_id: str
    open_time: int = 0
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True, slots=True)
class MarketInfo:
    """Order book market metadata needed to build swap accounts."""

    market_id: str
    fields: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True, slots=True)
class PoolKeys:
    """Everything a swap backend needs to address a pool."""

    pool_id: str
    base_mint: str
    quote_mint: str
    base_decimals: int
    quote_decimals: int
    market: MarketInfo

    @classmethod
    def from_state(cls, state: PoolState, market: MarketInfo) -> PoolKeys:
        return cls(
            pool_id=state.pool_id,
            base_mint=state.base_mint,
            quote_mint=state.quote_mint,
            base_decimals=state.base_decimals,
            quote_decimals=state.quote_decimals,
            market=market,
        )


@dataclass(frozen=True, slots=True)
class Candidate:
    """A newly seen pool that may be worth entering."""

    mint: str
    pool_id: str
    pool_state: PoolState

    @classmethod
    def from_pool_state(cls, state: PoolState) -> Candidate:
        return cls(mint=state.base_mint, pool_id=state.pool_id, pool_state=state)


@dataclass(frozen=True, slots=True)
class FilterResult:
    """Result of one eligibility filter check."""

    ok: bool
    detail: str = ""


@dataclass(frozen=True, slots=True)
class FilterReason:
    name: str
    passed: bool
    detail: str


@dataclass(frozen=True, slots=True)
class EligibilityVerdict:
    """Combined result of all filters, reasons in filter declaration order."""

    passed: bool
    reasons: tuple[FilterReason, ...] = ()

    @property
    def failed_filters(self) -> list[str]:
        return [reason.name for reason in self.reasons if not reason.passed]


@dataclass(frozen=True, slots=True)
class TakeProfitPoint:
    """Sell ``base_to_sell`` once the position is worth at least ``quote_threshold``."""

    quote_threshold: TokenAmount
    base_to_sell: TokenAmount


class PositionState(str, Enum):
    PENDING_ENTRY = "pending_entry"
    OPEN = "open"
    EXITING = "exiting"
    CLOSED = "closed"


@dataclass(slots=True)
class PositionRecord:
    """Live trade lifecycle for one mint, owned by the position controller."""

    mint: str
    pool_id: str
    entry_quote: TokenAmount
    base_sold: TokenAmount
    quote_proceeds: TokenAmount
    state: PositionState = PositionState.PENDING_ENTRY
    entry_base: TokenAmount | None = None
    ladder: tuple[TakeProfitPoint, ...] = ()
    opened_at: str = ""

    def snapshot(self) -> dict[str, object]:
        return {
            "pool_id": self.pool_id,
            "state": self.state.value,
            "entry_quote": str(self.entry_quote),
            "entry_base": str(self.entry_base) if self.entry_base is not None else None,
            "base_sold": str(self.base_sold),
            "quote_proceeds": str(self.quote_proceeds),
            "ladder": [
                {"quote": str(p.quote_threshold), "base": str(p.base_to_sell)} for p in self.ladder
            ],
            "opened_at": self.opened_at,
        }


class SwapDirection(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True, slots=True)
class SwapQuote:
    """Price computation for a swap; never submits anything."""

    min_amount_out: TokenAmount
    price_amount_out: TokenAmount


@dataclass(frozen=True, slots=True)
class SwapRequest:
    pool_keys: PoolKeys
    amount_in: TokenAmount
    direction: SwapDirection
    slippage: Decimal
    min_amount_out: TokenAmount | None = None
    priority_fee: PriorityFee | None = None


@dataclass(frozen=True, slots=True)
class SwapResult:
    """Outcome reported by the submission backend for one attempt."""

    confirmed: bool
    signature: str | None = None
    error: str | None = None
    amount_out: TokenAmount | None = None


@dataclass(frozen=True, slots=True)
class PollOutcome:
    matched: bool
    attempts_run: int
    value: Any = None


@dataclass(frozen=True, slots=True)
class SubmissionOutcome:
    """Result of a bounded series of submission attempts."""

    confirmed: bool
    attempts: int
    result: SwapResult | None = None
    error: str | None = None


EntryStatus = Literal[
    "opened",
    "skipped_not_in_allow_list",
    "skipped_duplicate",
    "skipped_lane_busy",
    "skipped_ineligible",
    "failed",
    "failed_precondition",
]

ExitStatus = Literal[
    "closed",
    "sold_partial",
    "skipped_no_balance",
    "skipped_busy",
    "skipped_no_pool",
    "failed",
    "failed_precondition",
]


@dataclass(slots=True)
class EntryOutcome:
    status: EntryStatus
    mint: str
    position: PositionRecord | None = None
    verdict: EligibilityVerdict | None = None
    attempts: int = 0
    detail: str = ""


@dataclass(slots=True)
class ExitOutcome:
    status: ExitStatus
    mint: str
    reason: str = ""
    base_sold: TokenAmount | None = None
    quote_proceeds: TokenAmount | None = None
    attempts: int = 0
    detail: str = ""
