"""
market-pulse: data_ingest CLI

    python -m data_ingest replay [--date 2012-03] [--speed 10]
                                 [--news-dir DIR] [--stocks-file CSV] [--presorted]

Replays the historical news and price CSVs onto the bus in timestamp order.
Exit codes: 0 ok, 1 bus unreachable or publish failure, 2 bad arguments.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from typing import List, Optional

from common.config import Settings
from common.errors import BusConnectionError, MalformedRecordError, PublishError
from common.logging import configure
from common.queue import StreamProducer, TopicConfig, redis_client_factory
from common.retry import RetryPolicy
from data_ingest.replay import HistoricalReplayProducer
from data_ingest.sources import default_sources


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="python -m data_ingest")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("replay", help="Replay historical CSVs onto the bus")
    p.add_argument("--date", help="Only events whose UTC timestamp starts with this prefix (e.g. 2012-03)")
    p.add_argument("--speed", type=float, default=1.0, help="Speed multiplier, >= 1 (default 1)")
    p.add_argument("--news-dir", help="Directory of news CSVs (env DATA_NEWS_DIR)")
    p.add_argument("--stocks-file", help="Stock prices CSV (env DATA_STOCKS_FILE)")
    p.add_argument("--presorted", action="store_true", help="Sources are already in timestamp order; stream them")
    return ap.parse_args(argv)


async def _replay(args: argparse.Namespace, settings: Settings) -> int:
    if args.news_dir:
        settings.replay.news_dir = args.news_dir
    if args.stocks_file:
        settings.replay.stocks_file = args.stocks_file
    if args.presorted:
        settings.replay.presorted = True

    producer = StreamProducer(
        redis_client_factory(settings.bus.redis_url),
        TopicConfig.from_settings(settings.bus),
        RetryPolicy.from_settings(settings.bus),
    )
    replay = HistoricalReplayProducer(
        producer,
        batch_size=settings.replay.batch_size,
        base_delay=settings.replay.base_delay_secs,
        max_speed=settings.replay.max_speed,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, replay.stop)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await producer.connect()
    except BusConnectionError as e:
        print(f"[data_ingest] ERROR: {e}")
        return 1
    try:
        result = await replay.run(default_sources(settings.replay), date_filter=args.date, speed=args.speed)
    except (PublishError, MalformedRecordError) as e:
        print(f"[data_ingest] ERROR: replay aborted: {e}")
        return 1
    finally:
        await producer.disconnect()

    if result is not None:
        print(
            f"[data_ingest] Published {result.published} event(s) "
            f"(news={result.news}, prices={result.prices}) in {result.batches} batch(es)"
            + (" [stopped]" if result.stopped else "")
        )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    settings = Settings.from_env()
    configure(settings.log_level)
    if args.cmd == "replay":
        if args.speed < 1:
            print("[data_ingest] ERROR: --speed must be >= 1")
            return 2
        return asyncio.run(_replay(args, settings))
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
