"""Append-only JSONL trade journal."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

TRADE_EVENT_TYPES = frozenset(
    {
        "entry_skipped",
        "entry_confirmed",
        "entry_failed",
        "exit_skipped",
        "exit_confirmed",
        "exit_failed",
        "position_closed",
        "error",
    }
)


class JournalStore:
    """One JSONL file per UTC day, one line per trade event."""

    def __init__(self, journal_dir: Path) -> None:
        self._journal_dir = journal_dir
        self._journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def journal_dir(self) -> Path:
        return self._journal_dir

    def record(self, event_type: str, mint: str, **payload: Any) -> None:
        """Append a trade event for ``mint``. Amounts are written as decimal strings."""
        if event_type not in TRADE_EVENT_TYPES:
            raise ValueError(f"unsupported_event_type: {event_type}")
        now = datetime.now(timezone.utc)
        line = json.dumps(
            {
                "timestamp": now.isoformat(),
                "event_type": event_type,
                "mint": mint,
                "payload": payload,
            },
            ensure_ascii=True,
            default=str,
        )
        with (self._journal_dir / f"{now.date().isoformat()}.jsonl").open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def load_recent(self, limit: int, *, mint: str | None = None) -> list[dict[str, Any]]:
        """Newest ``limit`` events (optionally for one mint), oldest first."""
        if limit <= 0:
            return []
        rows: list[dict[str, Any]] = []
        for row in self._iter_newest_first():
            if mint is not None and row.get("mint") != mint:
                continue
            rows.append(row)
            if len(rows) >= limit:
                break
        rows.reverse()
        return rows

    def _iter_newest_first(self) -> Iterator[dict[str, Any]]:
        for file in sorted(self._journal_dir.glob("*.jsonl"), reverse=True):
            for line in reversed(file.read_text(encoding="utf-8").splitlines()):
                if line.strip():
                    yield json.loads(line)
