# shared/dedupe.py
# Duplicate-delivery guard for bus consumers.
# - Hash key: kind | source | symbol | canonical UTC timestamp | headline-or-price | prediction id
# - Bounded in-memory recency window (LRU), no state file.

from __future__ import annotations

import re
import unicodedata
from collections import OrderedDict
from hashlib import sha256
from typing import Any, Dict, Optional, Tuple

from shared.datetime_utils import to_iso_utc

# ---- Canonicalization helpers ------------------------------------------------

def _casefold_trim(s: Optional[str]) -> str:
    if not s:
        return ""
    # Unicode normalize (NFKC) + collapse whitespace + casefold
    s = unicodedata.normalize("NFKC", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s.casefold()


def _price_token(v: Any) -> str:
    if v is None:
        return ""
    # 101.5 and 101.50 hash the same
    return repr(float(v))


# ---- Public API --------------------------------------------------------------

def make_key(event: Any) -> Tuple[str, Dict[str, str]]:
    """
    Compute the stable event hash and return (hash_hex, key_dict_for_debug).
    News events key on the headline, price events on the price. Prediction
    events also key on their prediction id, so two distinct predictions with
    the same headline and timestamp are not collapsed.
    """
    kind = getattr(event, "kind", "")
    body = _casefold_trim(getattr(event, "headline", None)) if kind == "news" else _price_token(
        getattr(event, "price", None)
    )
    key = {
        "kind": kind,
        "source": _casefold_trim(getattr(event, "source", None)),
        "symbol": (getattr(event, "symbol", None) or "").upper(),
        "ts": to_iso_utc(event.timestamp),
        "body": body,
        "ref": str((getattr(event, "meta", None) or {}).get("prediction_id") or ""),
    }
    key_str = "|".join(key[k] for k in ("kind", "source", "symbol", "ts", "body", "ref"))
    return sha256(key_str.encode("utf-8")).hexdigest(), key


def event_key(event: Any) -> str:
    return make_key(event)[0]


class SeenWindow:
    """
    Recency set of event hashes. Holds at most `max_entries`; the least
    recently seen hash is forgotten first.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max(1, int(max_entries))
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self.duplicates = 0

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, h: str) -> bool:
        return h in self._seen

    def seen_or_record(self, h: str) -> bool:
        """Return True if h was already in the window; otherwise record it."""
        if h in self._seen:
            self._seen.move_to_end(h)
            self.duplicates += 1
            return True
        self._seen[h] = None
        if len(self._seen) > self.max_entries:
            self._seen.popitem(last=False)
        return False

    def clear(self) -> None:
        self._seen.clear()
