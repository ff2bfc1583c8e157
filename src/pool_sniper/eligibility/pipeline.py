"""Concurrent eligibility filters with a consecutive-pass debounce."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable, Protocol

from pool_sniper.errors import UnsupportedQueryError
from pool_sniper.scheduling.poller import Sleep, poll_until
from pool_sniper.types import Candidate, EligibilityVerdict, FilterReason, FilterResult, PollOutcome
from pool_sniper.utils.logging import get_logger, log_filter_report


class Filter(Protocol):
    """An opaque async predicate over a candidate pool."""

    async def check(self, candidate: Candidate) -> FilterResult: ...


@dataclass(slots=True)
class FilterSpec:
    """A filter plus how the pipeline should treat it."""

    filter: Filter
    name: str = ""
    timeout_ms: int | None = None
    fail_open_on_unsupported: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            self.name = getattr(self.filter, "name", type(self.filter).__name__)


class FilterPipeline:
    """AND of independently configured filters, run concurrently."""

    def __init__(self, filters: Iterable[FilterSpec | Filter] = (), *, timeout_ms: int = 5_000) -> None:
        if timeout_ms <= 0:
            raise ValueError("timeout_ms_must_be_positive")
        self._timeout_ms = timeout_ms
        self._specs: list[FilterSpec] = [
            f if isinstance(f, FilterSpec) else FilterSpec(filter=f) for f in filters
        ]
        self._logger = get_logger("pool_sniper.eligibility.pipeline")

    @property
    def filter_names(self) -> list[str]:
        return [spec.name for spec in self._specs]

    def add(self, spec: FilterSpec | Filter) -> None:
        self._specs.append(spec if isinstance(spec, FilterSpec) else FilterSpec(filter=spec))

    async def evaluate(self, candidate: Candidate) -> EligibilityVerdict:
        """Run every filter and combine. Reasons follow declaration order."""
        if not self._specs:
            return EligibilityVerdict(passed=True)

        reasons = await asyncio.gather(*(self._run_one(spec, candidate) for spec in self._specs))
        verdict = EligibilityVerdict(
            passed=all(reason.passed for reason in reasons),
            reasons=tuple(reasons),
        )
        if not verdict.passed:
            log_filter_report(
                self._logger,
                mint=candidate.mint,
                passed=False,
                reasons=[
                    {"filter": r.name, "ok": r.passed, "detail": r.detail} for r in verdict.reasons
                ],
            )
        return verdict

    async def debounced_match(
        self,
        candidate: Candidate,
        *,
        interval_ms: int,
        duration_ms: int,
        required_matches: int,
        sleep: Sleep = asyncio.sleep,
    ) -> PollOutcome:
        """Accept only after ``required_matches`` consecutive passing runs.

        Any failing run resets the streak. A zero interval or duration turns
        filtering off: the candidate is accepted without running any filter.
        """
        if interval_ms <= 0 or duration_ms <= 0:
            self._logger.debug("filter_check_disabled", mint=candidate.mint)
            return PollOutcome(matched=True, attempts_run=0)

        streak = 0
        last_verdict: EligibilityVerdict | None = None

        async def _check() -> EligibilityVerdict | None:
            nonlocal streak, last_verdict
            try:
                verdict = await self.evaluate(candidate)
            except Exception:
                streak = 0
                raise
            last_verdict = verdict
            streak = streak + 1 if verdict.passed else 0
            self._logger.debug(
                "filter_match",
                mint=candidate.mint,
                streak=f"{streak}/{required_matches}",
            )
            return verdict if streak >= required_matches else None

        outcome = await poll_until(
            interval_ms,
            duration_ms,
            _check,
            sleep=sleep,
            label="filter_check",
            mint=candidate.mint,
        )
        if outcome.matched:
            return outcome
        return PollOutcome(matched=False, attempts_run=outcome.attempts_run, value=last_verdict)

    async def _run_one(self, spec: FilterSpec, candidate: Candidate) -> FilterReason:
        timeout_ms = spec.timeout_ms or self._timeout_ms
        try:
            result = await asyncio.wait_for(spec.filter.check(candidate), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return FilterReason(spec.name, False, f"timed out after {timeout_ms} ms")
        except UnsupportedQueryError as exc:
            if spec.fail_open_on_unsupported:
                return FilterReason(spec.name, True, f"unsupported query, failing open: {exc}")
            return FilterReason(spec.name, False, f"unsupported query: {exc}")
        except Exception as exc:  # noqa: BLE001 - one broken filter must not hide the others.
            self._logger.error(
                "filter_failed",
                mint=candidate.mint,
                filter=spec.name,
                error=str(exc),
            )
            return FilterReason(spec.name, False, f"failed: {exc}")
        return FilterReason(spec.name, result.ok, result.detail)
