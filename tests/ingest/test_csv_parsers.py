from pathlib import Path

import pytest

from data_ingest.csv_common import ParseStats
from data_ingest.news_csv import iter_news_csv
from data_ingest.prices_csv import iter_prices_csv
from data_ingest.sources import discover_news_files


def _write(p: Path, text: str) -> Path:
    p.write_text(text.lstrip("\n"), encoding="utf-8")
    return p


def test_news_rows_parse_and_bad_rows_are_dropped(tmp_path: Path):
    fp = _write(tmp_path / "news.csv", """
Article,Date,Sentiment Score,Sentiment Label
Apple beats estimates,2012-03-01 14:30:00,0.8,positive
"Markets, mixed",3/2/2012,,neutral
No date here,not a date,0.1,neutral
,2012-03-03,0.2,neutral
Score is text,2012-03-04,abc,neutral
Score too big,2012-03-05,1.7,positive
""")
    stats = ParseStats(path=fp.name)
    events = list(iter_news_csv(fp, stats=stats))

    assert [e.headline for e in events] == ["Apple beats estimates", "Markets, mixed"]
    first, second = events
    assert first.source == "Bloomberg"
    assert first.sentiment_score == 0.8
    assert first.sentiment_label == "positive"
    assert first.meta["original_date"] == "2012-03-01 14:30:00"
    assert second.sentiment_score is None
    assert second.timestamp.isoformat() == "2012-03-02T00:00:00+00:00"

    assert stats.rows == 6
    assert stats.emitted == 2
    assert stats.dropped == 4
    assert stats.reasons["date_unparseable"] == 1
    assert stats.reasons["empty_article"] == 1
    assert stats.reasons["sentiment_not_numeric"] == 1
    assert stats.reasons["sentiment_out_of_range"] == 1


def test_news_drops_are_logged_with_line(tmp_path: Path, caplog):
    fp = _write(tmp_path / "bad.csv", """
Article,Date,Sentiment Score,Sentiment Label
Broken,31/31/2012,0.1,neutral
""")
    with caplog.at_level("WARNING"):
        assert list(iter_news_csv(fp)) == []
    assert "bad.csv:2 dropped" in caplog.text


def test_prices_long_format(tmp_path: Path):
    fp = _write(tmp_path / "prices.csv", """
Date,Ticker,Open,High,Low,Close,Adj Close,Volume
2012-03-01,AAPL,54.0,55.0,53.5,54.6,47.0,1000
2012-03-01,MSFT,31.9,32.3,31.8,32.0,,2000
Date,Ticker,Open,High,Low,Close,Adj Close,Volume
2012-03-02,AAPL,54.6,55.1,54.2,,54.9,1500
bogus,AAPL,1,1,1,1,1,1
2012-03-02,MSFT,32.0,32.1,31.5,-1,,100
""")
    stats = ParseStats(path=fp.name)
    events = list(iter_prices_csv(fp, stats=stats))

    assert [(e.symbol, e.price) for e in events] == [("AAPL", 54.6), ("MSFT", 32.0), ("AAPL", 54.9)]
    aapl = events[0]
    assert (aapl.open, aapl.high, aapl.low, aapl.close, aapl.volume) == (54.0, 55.0, 53.5, 54.6, 1000.0)
    assert aapl.source == "Kaggle"
    assert aapl.meta == {"original_date": "2012-03-01", "column": "Close"}
    assert events[2].meta["column"] == "Adj Close"
    # repeated header row skipped silently
    assert stats.rows == 5
    assert stats.dropped == 2
    assert stats.reasons["date_unparseable"] == 1
    assert stats.reasons["price_not_positive"] == 1


def test_prices_wide_format(tmp_path: Path):
    fp = _write(tmp_path / "wide.csv", """
Price,Close,Close,High,High,Volume,Volume
Ticker,AAPL,MSFT,AAPL,MSFT,AAPL,MSFT
Date,,,,,,
2012-03-01,54.6,32.0,55.0,32.3,1000,2000
2012-03-02,54.9,,55.1,,1500,
""")
    events = list(iter_prices_csv(fp))
    assert [(e.timestamp.day, e.symbol, e.price) for e in events] == [
        (1, "AAPL", 54.6),
        (1, "MSFT", 32.0),
        (2, "AAPL", 54.9),
    ]
    assert events[0].high == 55.0
    assert events[0].volume == 1000.0
    assert events[0].meta["column"] == "Close"


def test_wide_format_needs_ticker_row(tmp_path: Path):
    fp = _write(tmp_path / "broken.csv", """
Price,Close
2012-03-01,54.6
""")
    with pytest.raises(ValueError):
        list(iter_prices_csv(fp))


def test_discover_news_files_sorted(tmp_path: Path):
    for name in ("b.csv", "a.csv", "notes.txt"):
        (tmp_path / name).write_text("Article,Date\n", encoding="utf-8")
    assert [p.name for p in discover_news_files(tmp_path)] == ["a.csv", "b.csv"]
    assert discover_news_files(tmp_path / "missing") == []


def test_undecodable_bytes_drop_only_that_row(tmp_path: Path):
    fp = tmp_path / "mixed.csv"
    fp.write_bytes(
        b"Article,Date,Sentiment Score,Sentiment Label\n"
        b"Apple beats estimates,2012-03-01,0.8,positive\n"
        b"Bad \xff\xfe bytes,2012-03-02,0.1,negative\n"
        b"Oil slides,2012-03-03,-0.4,negative\n"
    )
    stats = ParseStats(path=fp.name)
    got = [e.headline for e in iter_news_csv(fp, stats=stats)]
    assert got == ["Apple beats estimates", "Oil slides"]
    assert stats.reasons["invalid_utf8"] == 1


def test_prices_with_undecodable_bytes_keep_other_rows(tmp_path: Path):
    fp = tmp_path / "prices.csv"
    fp.write_bytes(
        b"Date,Ticker,Close\n"
        b"2012-03-01,AAPL,54.1\n"
        b"2012-03-02,A\xffPL,55.0\n"
        b"2012-03-05,AAPL,56.2\n"
    )
    stats = ParseStats(path=fp.name)
    assert [e.price for e in iter_prices_csv(fp, stats=stats)] == [54.1, 56.2]
    assert stats.reasons["invalid_utf8"] == 1
