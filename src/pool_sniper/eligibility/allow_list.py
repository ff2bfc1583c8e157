"""File-backed allow-list of mints that skip the filter pipeline."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

from pool_sniper.config import Settings
from pool_sniper.utils.logging import get_logger


class AllowList:
    """Newline-separated mint list, reloaded at most every ``refresh_ms``."""

    def __init__(
        self,
        path: Path,
        *,
        refresh_ms: int = 30_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._path = path
        self._refresh_s = refresh_ms / 1000
        self._clock = clock
        self._mints: frozenset[str] = frozenset()
        self._loaded_at: float | None = None
        self._logger = get_logger("pool_sniper.eligibility.allow_list")

    @classmethod
    def from_settings(cls, settings: Settings) -> AllowList:
        return cls(settings.allow_list_path, refresh_ms=settings.allow_list_refresh_ms)

    def __contains__(self, mint: object) -> bool:
        return isinstance(mint, str) and self.is_in_list(mint)

    def __len__(self) -> int:
        self._refresh_if_stale()
        return len(self._mints)

    def is_in_list(self, mint: str) -> bool:
        self._refresh_if_stale()
        return mint in self._mints

    def reload(self) -> None:
        """Read the file again. A missing file means an empty list."""
        self._loaded_at = self._clock()
        if not self._path.exists():
            self._logger.warning("allow_list_missing", path=str(self._path))
            self._mints = frozenset()
            return
        lines = self._path.read_text(encoding="utf-8").splitlines()
        self._mints = frozenset(
            line.strip() for line in lines if line.strip() and not line.strip().startswith("#")
        )
        self._logger.debug("allow_list_loaded", path=str(self._path), count=len(self._mints))

    def _refresh_if_stale(self) -> None:
        if self._loaded_at is None or self._clock() - self._loaded_at >= self._refresh_s:
            self.reload()
