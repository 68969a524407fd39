"""
market-pulse: whole pipeline on one event loop.

    python -m services.pipeline.main [--date 2012-03] [--speed 10] [--no-replay]

Starts evaluation, then reasoning, then (unless --no-replay) the historical
replay, and runs until SIGINT/SIGTERM. Exits 1 if the bus is unreachable at boot.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from typing import List, Optional

from common.config import Settings
from common.errors import BusConnectionError
from common.logging import configure, get_logger
from services.controller import PipelineController

log = get_logger("pipeline")

STATUS_EVERY_SECS = 60.0


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="python -m services.pipeline.main")
    p.add_argument("--date", help="Replay only events whose UTC timestamp starts with this prefix")
    p.add_argument("--speed", type=float, default=1.0, help="Replay speed multiplier, >= 1 (default 1)")
    p.add_argument("--no-replay", action="store_true", help="Do not start the historical replay")
    return p.parse_args(argv)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass


async def run(args: argparse.Namespace, settings: Settings, controller: Optional[PipelineController] = None,
              stop: Optional[asyncio.Event] = None) -> int:
    controller = controller or PipelineController(settings)
    stop = stop or asyncio.Event()
    _install_signal_handlers(stop)

    try:
        await controller.connect()
    except BusConnectionError as e:
        log.error("bus unreachable at boot: %s", e)
        return 1

    for name, start in (("evaluation", controller.start_evaluation), ("reasoning", controller.start_reasoning)):
        resp = await start()
        if "error" in resp:
            log.error("%s failed to start: %s", name, resp["message"])
            await controller.shutdown()
            return 1

    if not args.no_replay:
        resp = await controller.start_stream("historical", args.date, args.speed)
        if "error" in resp:
            log.error("replay failed to start: %s", resp["message"])

    log.info("pipeline running; Ctrl-C to stop")
    try:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=STATUS_EVERY_SECS)
            except asyncio.TimeoutError:
                st = controller.status()
                log.info(
                    "status: stream=%s published=%s predictions=%s pending=%s accuracy=%.2f threshold=%.2f",
                    st["stream"]["state"], st["stream"]["published"], st["reasoning"]["predictions"],
                    st["evaluation"]["pending"], st["metrics"]["accuracy"], st["recommended_threshold"],
                )
    finally:
        await controller.shutdown()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    settings = Settings.from_env()
    configure(settings.log_level)
    if args.speed < 1:
        log.error("--speed must be >= 1")
        return 2
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
