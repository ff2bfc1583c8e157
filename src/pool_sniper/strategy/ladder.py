"""Take-profit ladder and stop-loss math on integer token units."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Literal, Protocol, Union

from pool_sniper.types import TakeProfitPoint, TokenAmount

ExitReason = Literal["take_profit", "stop_loss", "time_limit"]


class _Step(Protocol):
    profit_pct: Decimal
    sell_pct: Decimal


ScheduleStep = Union[_Step, tuple[Union[Decimal, int, str], Union[Decimal, int, str]]]


@dataclass(frozen=True, slots=True)
class ExitSignal:
    """Decision produced by one price check: sell ``amount`` now."""

    reason: ExitReason
    amount: TokenAmount
    observed_quote: TokenAmount | None = None


def percent_of(raw: int, pct: Decimal | int | str) -> int:
    """``raw * pct / 100`` rounded down, computed exactly on integers."""
    numerator, denominator = Decimal(pct).as_integer_ratio()
    return raw * numerator // (denominator * 100)


def build_exit_ladder(
    entry_quote: TokenAmount,
    entry_base: TokenAmount,
    schedule: Iterable[ScheduleStep],
) -> tuple[TakeProfitPoint, ...]:
    """Turn ``(profit_pct, sell_pct)`` steps into sell points, highest threshold first.

    Steps whose thresholds round to the same raw value are merged so the
    thresholds stay strictly decreasing.
    """
    by_threshold: dict[int, int] = {}
    total_sell_pct = Decimal(0)
    for step in schedule:
        profit_pct, sell_pct = _as_pair(step)
        if profit_pct < 0 or sell_pct <= 0:
            raise ValueError(f"invalid take profit step: {profit_pct}/{sell_pct}")
        total_sell_pct += sell_pct
        threshold = entry_quote.raw + percent_of(entry_quote.raw, profit_pct)
        by_threshold[threshold] = by_threshold.get(threshold, 0) + percent_of(entry_base.raw, sell_pct)

    if total_sell_pct > 100:
        raise ValueError(f"take profit sell percentages add up to {total_sell_pct} > 100")

    return tuple(
        TakeProfitPoint(
            quote_threshold=entry_quote.with_raw(threshold),
            base_to_sell=entry_base.with_raw(base),
        )
        for threshold, base in sorted(by_threshold.items(), reverse=True)
    )


def cumulative_sell_amount(ladder: tuple[TakeProfitPoint, ...], observed_quote: TokenAmount) -> int:
    """Raw base units unlocked at ``observed_quote``: every point at or below it."""
    total = 0
    for index, point in enumerate(ladder):
        if observed_quote.raw >= point.quote_threshold.raw:
            total = sum(p.base_to_sell.raw for p in ladder[index:])
            break
    return total


def sell_amount(
    ladder: tuple[TakeProfitPoint, ...],
    observed_quote: TokenAmount,
    held: TokenAmount,
    already_sold: TokenAmount | None = None,
) -> TokenAmount:
    """Base amount to sell now, never more than the wallet holds."""
    unlocked = cumulative_sell_amount(ladder, observed_quote)
    if already_sold is not None:
        unlocked -= already_sold.raw
    return held.with_raw(min(max(unlocked, 0), held.raw))


def stop_loss_threshold(entry_quote: TokenAmount, stop_loss_pct: Decimal | int | str) -> TokenAmount:
    return entry_quote.with_raw(entry_quote.raw - percent_of(entry_quote.raw, stop_loss_pct))


def evaluate_exit(
    *,
    ladder: tuple[TakeProfitPoint, ...],
    entry_quote: TokenAmount,
    observed_quote: TokenAmount,
    held: TokenAmount,
    already_sold: TokenAmount | None,
    stop_loss_pct: Decimal,
) -> ExitSignal | None:
    """Stop-loss first (sell everything), then the ladder. ``None`` means hold."""
    if stop_loss_pct > 0 and observed_quote < stop_loss_threshold(entry_quote, stop_loss_pct):
        return ExitSignal(reason="stop_loss", amount=held, observed_quote=observed_quote)

    amount = sell_amount(ladder, observed_quote, held, already_sold)
    if amount.is_zero():
        return None
    return ExitSignal(reason="take_profit", amount=amount, observed_quote=observed_quote)


def _as_pair(step: ScheduleStep) -> tuple[Decimal, Decimal]:
    if isinstance(step, tuple):
        profit_pct, sell_pct = step
        return Decimal(profit_pct), Decimal(sell_pct)
    return Decimal(step.profit_pct), Decimal(step.sell_pct)
