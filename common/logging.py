from __future__ import annotations

import logging
import os
import sys

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def configure(level: str | None = None) -> None:
    """Install one stdout handler on the root logger.

    Safe to call repeatedly; later calls only change the level when one is
    passed explicitly.
    """
    global _configured
    if _configured and level is None:
        return

    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
        _configured = True

    lvl = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    try:
        root.setLevel(lvl)
    except ValueError:
        root.setLevel(logging.INFO)

    # redis-py and urllib3 are chatty on reconnects
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    configure()
    return logging.getLogger(name)
