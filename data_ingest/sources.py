# data_ingest/sources.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Union

from common.config import ReplaySettings
from common.schemas import NewsEvent, PriceEvent
from data_ingest.csv_common import log
from data_ingest.news_csv import iter_news_csv
from data_ingest.prices_csv import iter_prices_csv

Event = Union[NewsEvent, PriceEvent]


@dataclass
class ReplaySource:
    """
    A named, re-iterable event source. `open` is called once per replay.
    presorted=True promises timestamps never go backwards, so the replay can
    stream the source instead of sorting it in memory.
    """
    name: str
    open: Callable[[], Iterable[Event]]
    presorted: bool = False

    @classmethod
    def from_events(cls, name: str, events: Iterable[Event], presorted: bool = False) -> "ReplaySource":
        items = list(events)
        return cls(name=name, open=lambda: iter(items), presorted=presorted)


def discover_news_files(news_dir: str | Path) -> List[Path]:
    d = Path(news_dir)
    if not d.is_dir():
        log.warning("news directory not found: %s", d)
        return []
    files = sorted(p for p in d.iterdir() if p.is_file() and p.suffix.lower() == ".csv")
    if not files:
        log.warning("no news CSV files in %s", d)
    return files


def default_sources(settings: ReplaySettings) -> List[ReplaySource]:
    """All news files (sorted by name) first, then the stocks file; declared order breaks timestamp ties."""
    sources: List[ReplaySource] = []
    for fp in discover_news_files(settings.news_dir):
        sources.append(ReplaySource(name=fp.name, open=lambda fp=fp: iter_news_csv(fp), presorted=settings.presorted))

    stocks = Path(settings.stocks_file)
    if stocks.is_file():
        sources.append(ReplaySource(name=stocks.name, open=lambda: iter_prices_csv(stocks), presorted=settings.presorted))
    else:
        log.warning("stocks file not found: %s", stocks)
    return sources
