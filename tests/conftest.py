# Make the repository root importable during tests
import asyncio
import sys
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# tests/ is one level below the repo root
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import redis  # noqa: E402

from common.schemas import NewsEvent, PriceEvent  # noqa: E402

T0 = datetime(2012, 3, 1, 14, 0, tzinfo=timezone.utc)


class FakeRedis:
    """
    In-memory subset of redis.asyncio.Redis covering what common.queue uses:
    ping, xadd, xgroup_create, xreadgroup, xack, pipeline, aclose.
    Consumer groups start at '$' (only later messages) like the real server.
    """

    def __init__(self, *, fail_ping=0, fail_topics=()):
        self.streams = defaultdict(list)          # stream -> [(id, fields)]
        self.groups = {}                          # (stream, group) -> next index
        self.acked = defaultdict(list)            # (stream, group) -> [ids]
        self.fail_ping = fail_ping                # number of pings that raise before success
        self.fail_topics = set(fail_topics)       # xadd to these raises ConnectionError
        self.pings = 0
        self.closed = False
        self._seq = 0

    async def ping(self):
        self.pings += 1
        if self.fail_ping is True or (self.fail_ping and self.pings <= self.fail_ping):
            raise redis.exceptions.ConnectionError("connection refused")
        return True

    def _add(self, stream, fields):
        if stream in self.fail_topics:
            raise redis.exceptions.ConnectionError(f"write to {stream} failed")
        self._seq += 1
        msg_id = f"{self._seq}-0"
        self.streams[stream].append((msg_id, dict(fields)))
        return msg_id

    async def xadd(self, stream, fields):
        return self._add(stream, fields)

    async def xgroup_create(self, stream, group, id="$", mkstream=False):
        key = (stream, group)
        if key in self.groups:
            raise redis.exceptions.ResponseError("BUSYGROUP Consumer Group name already exists")
        self.groups[key] = len(self.streams[stream]) if id == "$" else 0

    async def xreadgroup(self, group, consumer, streams, count=None, block=None):
        out = []
        for stream in streams:
            key = (stream, group)
            start = self.groups.get(key, 0)
            msgs = self.streams[stream][start:]
            if count:
                msgs = msgs[:count]
            if msgs:
                self.groups[key] = start + len(msgs)
                out.append([stream, msgs])
        if not out:
            await asyncio.sleep(0.005)
        return out

    async def xack(self, stream, group, *ids):
        self.acked[(stream, group)].extend(ids)
        return len(ids)

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def xadd(self, stream, fields):
        self.ops.append((stream, fields))
        return self

    async def execute(self):
        return [self.client._add(s, f) for s, f in self.ops]


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client_factory(fake_redis):
    return lambda: fake_redis


def news(ts, headline="Headline", score=None, symbol=None, source="Bloomberg", **meta):
    return NewsEvent(timestamp=ts, source=source, symbol=symbol, headline=headline,
                     sentiment_score=score, meta=meta)


def price(ts, p, symbol="AAPL", source="Kaggle"):
    return PriceEvent(timestamp=ts, source=source, symbol=symbol, price=p)


def at(minutes=0, hours=0, days=0):
    return T0 + timedelta(minutes=minutes, hours=hours, days=days)
