# data_ingest/news_csv.py
"""
Financial news CSV reader.

Expected header: Article, Date, Sentiment Score, Sentiment Label.
Rows are streamed; bad rows are logged with file:line and counted, never fatal.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError

from common.schemas import NewsEvent
from data_ingest.csv_common import ParseStats, has_undecodable, log, parse_float
from shared.datetime_utils import parse_to_utc

DEFAULT_SOURCE = "Bloomberg"


def _cell(row: dict, name: str) -> str:
    v = row.get(name)
    return v.strip() if isinstance(v, str) else ""


def iter_news_csv(
    path: str | Path,
    *,
    source: str = DEFAULT_SOURCE,
    stats: Optional[ParseStats] = None,
) -> Iterator[NewsEvent]:
    path = Path(path)
    stats = stats if stats is not None else ParseStats(path=path.name)

    with path.open("r", encoding="utf-8", errors="replace", newline="") as f:
        reader = csv.DictReader(f)
        for row in reader:
            # header is line 1
            line = reader.line_num
            if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
                continue
            stats.rows += 1
            if has_undecodable(row.values()):
                stats.drop(line, "invalid_utf8")
                continue

            headline = _cell(row, "Article")
            if not headline:
                stats.drop(line, "empty_article")
                continue

            raw_date = _cell(row, "Date")
            try:
                ts = parse_to_utc(raw_date)
            except ValueError as e:
                stats.drop(line, f"date_{e}")
                continue

            try:
                score = parse_float(row.get("Sentiment Score"))
            except ValueError:
                stats.drop(line, "sentiment_not_numeric")
                continue
            if score is not None and not (-1.0 <= score <= 1.0):
                stats.drop(line, "sentiment_out_of_range")
                continue

            try:
                ev = NewsEvent(
                    timestamp=ts,
                    source=source,
                    headline=headline,
                    sentiment_score=score,
                    sentiment_label=_cell(row, "Sentiment Label") or None,
                    meta={"original_date": raw_date},
                )
            except ValidationError as e:
                stats.drop(line, "invalid")
                log.debug("%s:%d %s", path.name, line, e)
                continue

            stats.emitted += 1
            yield ev

    log.info("news %s", stats.summary())
