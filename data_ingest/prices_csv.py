# data_ingest/prices_csv.py
"""
Stock price CSV reader. Two layouts are detected from the first row:

long   Date,Ticker,Open,High,Low,Close,Adj Close,Volume
       one row per (date, ticker)

wide   Price,Close,Close,High,High,...      <- labels
       Ticker,AAPL,MSFT,AAPL,MSFT,...       <- symbols
       Date,,,,,                            <- optional
       2012-03-01,54.1,31.9,...             <- one row per date

The price of an event is Close, else Adj Close, else Price.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from common.schemas import PriceEvent
from data_ingest.csv_common import ParseStats, has_undecodable, log, parse_float
from shared.datetime_utils import parse_to_utc

DEFAULT_SOURCE = "Kaggle"

_HEADER_MARKERS = {"date", "ticker", "price"}
_PRICE_PREFERENCE = ("close", "adj close", "price")
_FIELD_FOR_LABEL = {"open": "open", "high": "high", "low": "low", "close": "close", "volume": "volume"}


def _label(s: str) -> str:
    return " ".join((s or "").strip().lower().replace("_", " ").split())


def _build_event(
    ts,
    raw_date: str,
    symbol: str,
    values: Dict[str, Optional[float]],
    labels: Dict[str, str],
    source: str,
) -> Tuple[Optional[PriceEvent], Optional[str]]:
    """Returns (event, None), (None, reason) for a drop, or (None, None) for nothing to emit."""
    price_label = next((lbl for lbl in _PRICE_PREFERENCE if values.get(lbl) is not None), None)
    if price_label is None:
        if any(v is not None for v in values.values()):
            return None, "no_price"
        return None, None
    price = values[price_label]
    if price <= 0:
        return None, "price_not_positive"
    fields = {f: values.get(lbl) for lbl, f in _FIELD_FOR_LABEL.items()}
    try:
        ev = PriceEvent(
            timestamp=ts,
            symbol=symbol,
            source=source,
            price=price,
            meta={"original_date": raw_date, "column": labels.get(price_label, price_label)},
            **fields,
        )
    except ValidationError:
        return None, "invalid"
    return ev, None


def _iter_long(reader, header: List[str], path: Path, source: str, stats: ParseStats) -> Iterator[PriceEvent]:
    cols = {_label(h): i for i, h in enumerate(header)}
    if "date" not in cols:
        raise ValueError(f"{path.name}: no Date column in header")
    date_i = cols["date"]
    ticker_i = cols.get("ticker")
    value_cols = {lbl: i for lbl, i in cols.items() if lbl in _PRICE_PREFERENCE or lbl in _FIELD_FOR_LABEL}
    original = {_label(h): h.strip() for h in header}

    for row in reader:
        line = reader.line_num
        if not any(c.strip() for c in row):
            continue
        raw_date = row[date_i].strip() if date_i < len(row) else ""
        if raw_date.lower() in _HEADER_MARKERS:
            continue
        stats.rows += 1
        if has_undecodable(row):
            stats.drop(line, "invalid_utf8")
            continue
        try:
            ts = parse_to_utc(raw_date)
        except ValueError as e:
            stats.drop(line, f"date_{e}")
            continue
        symbol = row[ticker_i].strip() if ticker_i is not None and ticker_i < len(row) else ""
        if not symbol:
            stats.drop(line, "missing_ticker")
            continue
        try:
            values = {lbl: parse_float(row[i] if i < len(row) else None) for lbl, i in value_cols.items()}
        except ValueError:
            stats.drop(line, "value_not_numeric")
            continue
        ev, reason = _build_event(ts, raw_date, symbol, values, original, source)
        if reason:
            stats.drop(line, reason)
        elif ev is not None:
            stats.emitted += 1
            yield ev


def _iter_wide(reader, header: List[str], path: Path, source: str, stats: ParseStats) -> Iterator[PriceEvent]:
    try:
        tickers = next(reader)
    except StopIteration:
        return
    if _label(tickers[0] if tickers else "") != "ticker":
        raise ValueError(f"{path.name}: wide layout needs a Ticker row under the Price row")

    # symbol -> {label: column index}
    groups: Dict[str, Dict[str, int]] = {}
    original: Dict[str, str] = {}
    for i in range(1, len(header)):
        lbl = _label(header[i])
        sym = tickers[i].strip() if i < len(tickers) else ""
        if not lbl or not sym:
            continue
        groups.setdefault(sym, {})[lbl] = i
        original.setdefault(lbl, header[i].strip())

    for row in reader:
        line = reader.line_num
        if not any(c.strip() for c in row):
            continue
        raw_date = row[0].strip()
        if raw_date.lower() in _HEADER_MARKERS:
            continue
        stats.rows += 1
        if has_undecodable(row):
            stats.drop(line, "invalid_utf8")
            continue
        try:
            ts = parse_to_utc(raw_date)
        except ValueError as e:
            stats.drop(line, f"date_{e}")
            continue
        for sym, cols in groups.items():
            try:
                values = {lbl: parse_float(row[i] if i < len(row) else None) for lbl, i in cols.items()}
            except ValueError:
                stats.drop(line, f"value_not_numeric:{sym}")
                continue
            ev, reason = _build_event(ts, raw_date, sym, values, original, source)
            if reason:
                stats.drop(line, f"{reason}:{sym}")
            elif ev is not None:
                stats.emitted += 1
                yield ev


def iter_prices_csv(
    path: str | Path,
    *,
    source: str = DEFAULT_SOURCE,
    stats: Optional[ParseStats] = None,
) -> Iterator[PriceEvent]:
    path = Path(path)
    stats = stats if stats is not None else ParseStats(path=path.name)

    with path.open("r", encoding="utf-8", errors="replace", newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if not header:
            log.warning("prices %s: empty file", path.name)
            return
        if _label(header[0]) == "price":
            yield from _iter_wide(reader, header, path, source, stats)
        else:
            yield from _iter_long(reader, header, path, source, stats)

    log.info("prices %s", stats.summary())
