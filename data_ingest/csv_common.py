# data_ingest/csv_common.py
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from common.logging import get_logger

log = get_logger("data_ingest")


@dataclass
class ParseStats:
    """Row accounting for one CSV file."""
    path: str
    rows: int = 0
    emitted: int = 0
    dropped: int = 0
    reasons: Counter = field(default_factory=Counter)

    def drop(self, line: int, reason: str) -> None:
        self.dropped += 1
        self.reasons[reason] += 1
        log.warning("%s:%d dropped (%s)", self.path, line, reason)

    def summary(self) -> str:
        base = f"{self.path}: rows={self.rows} emitted={self.emitted} dropped={self.dropped}"
        if self.reasons:
            base += " (" + ", ".join(f"{k}={v}" for k, v in sorted(self.reasons.items())) + ")"
        return base


def parse_float(raw: Optional[str]) -> Optional[float]:
    """'' -> None; '1,234.5' -> 1234.5; raises ValueError on anything else non-numeric."""
    if raw is None:
        return None
    s = str(raw).strip().replace(",", "")
    if not s:
        return None
    v = float(s)
    if v != v or v in (float("inf"), float("-inf")):
        raise ValueError("not finite")
    return v


# Files are opened with errors="replace"; a row holding this character had undecodable bytes.
REPLACEMENT_CHAR = "\ufffd"


def has_undecodable(cells) -> bool:
    return any(isinstance(c, str) and REPLACEMENT_CHAR in c for c in cells)
