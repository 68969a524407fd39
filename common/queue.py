"""
Redis Streams bus client.

One stream per topic; events are written with XADD and read through a
consumer group with XREADGROUP/XACK. Each message carries three fields:

    key   symbol if the event has one, else its canonical timestamp
    data  the MarketEvent as JSON
    ts    event timestamp in epoch milliseconds

Delivery is at-least-once. The consumer drops duplicates it has seen
recently (shared.dedupe.SeenWindow) so redelivery after a restart or a
retried pipeline send does not reach handlers twice.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import os
import socket
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Union

import redis
import redis.asyncio

from common.errors import BusConnectionError, MalformedRecordError, NotConnectedError, PublishError
from common.logging import get_logger
from common.retry import RetryPolicy, retry_async
from common.schemas import NewsEvent, PriceEvent, parse_event
from shared.datetime_utils import to_epoch_ms, to_iso_utc
from shared.dedupe import SeenWindow, event_key

log = get_logger("bus")

Event = Union[NewsEvent, PriceEvent]
ClientFactory = Callable[[], Any]
Handler = Callable[[Event], Union[None, Awaitable[None]]]

# Errors worth a reconnect/retry; anything else is a bug or a server-side refusal.
TRANSIENT_ERRORS = (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError, OSError)


def consumer_name(group: str) -> str:
    """Consumer name unique to this host and process."""
    return f"{group}-{socket.gethostname()}-{os.getpid()}"


def redis_client_factory(url: str) -> ClientFactory:
    def _client():
        return redis.asyncio.Redis.from_url(url, decode_responses=True)
    return _client


@dataclass(frozen=True)
class TopicConfig:
    news: str = "market.news"
    prices: str = "market.prices"

    @classmethod
    def from_settings(cls, bus) -> "TopicConfig":
        return cls(news=bus.topic_news, prices=bus.topic_prices)

    def topic_for(self, event: Event) -> str:
        return self.news if event.kind == "news" else self.prices

    def all(self) -> List[str]:
        return [self.news, self.prices]


def encode_message(event: Event) -> Dict[str, str]:
    return {
        "key": event.symbol or to_iso_utc(event.timestamp),
        "data": event.model_dump_json(),
        "ts": str(to_epoch_ms(event.timestamp)),
    }


def decode_message(fields: Dict[str, Any]) -> Event:
    raw = fields.get("data")
    if not raw:
        raise MalformedRecordError("message has no data field")
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"message data is not JSON: {e}") from e
    return parse_event(payload)


async def _close(client) -> None:
    close = getattr(client, "aclose", None) or getattr(client, "close", None)
    if close is None:
        return
    res = close()
    if inspect.isawaitable(res):
        await res


async def _connect(client_factory: ClientFactory, retry: RetryPolicy, what: str):
    client = client_factory()

    async def _ping():
        return await client.ping()

    try:
        await retry_async(_ping, retry, retry_on=TRANSIENT_ERRORS, what=f"{what} connect")
    except TRANSIENT_ERRORS as e:
        await _close(client)
        raise BusConnectionError(f"{what}: bus unreachable after {retry.attempts} attempt(s): {e}") from e
    return client


class StreamProducer:
    """Publishes MarketEvents to the news/prices streams."""

    def __init__(
        self,
        client_factory: ClientFactory,
        topics: Optional[TopicConfig] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self._client_factory = client_factory
        self.topics = topics or TopicConfig()
        self.retry = retry or RetryPolicy()
        self._client = None
        self.published = 0

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = await _connect(self._client_factory, self.retry, "producer")
        log.info("producer connected")

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await _close(client)
            log.info("producer disconnected")

    def _require_client(self):
        if self._client is None:
            raise NotConnectedError("producer is not connected; call connect() first")
        return self._client

    async def ping(self) -> bool:
        """Single health probe, no retries."""
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except TRANSIENT_ERRORS as e:
            log.warning("producer ping failed: %s", e)
            return False

    async def publish(self, event: Event) -> int:
        return await self.publish_batch([event])

    async def publish_batch(self, events: Iterable[Event]) -> int:
        """
        Send a batch, one pipelined round-trip per destination topic, all topics
        concurrently. Returns the number of events sent. If any topic fails after
        retries, raises PublishError naming every failed topic; topics that
        succeeded stay published.
        """
        client = self._require_client()
        by_topic: "OrderedDict[str, List[Event]]" = OrderedDict()
        for ev in events:
            by_topic.setdefault(self.topics.topic_for(ev), []).append(ev)
        if not by_topic:
            return 0

        async def _send(topic: str, batch: Sequence[Event]) -> int:
            async def _once():
                pipe = client.pipeline(transaction=False)
                for ev in batch:
                    pipe.xadd(topic, encode_message(ev))
                await pipe.execute()
                return len(batch)
            return await retry_async(_once, self.retry, retry_on=TRANSIENT_ERRORS, what=f"publish {topic}")

        topics = list(by_topic)
        results = await asyncio.gather(*(_send(t, by_topic[t]) for t in topics), return_exceptions=True)

        failures: Dict[str, BaseException] = {}
        sent = 0
        for topic, res in zip(topics, results):
            if isinstance(res, BaseException):
                failures[topic] = res
            else:
                sent += res
        self.published += sent
        if failures:
            names = ", ".join(sorted(failures))
            raise PublishError(f"publish failed for topic(s): {names}", failures)
        return sent


class StreamConsumer:
    """Consumer-group reader that decodes, dedupes and dispatches events per topic."""

    def __init__(
        self,
        group: str,
        consumer_name: str,
        client_factory: ClientFactory,
        retry: Optional[RetryPolicy] = None,
        *,
        block_ms: int = 1000,
        count: int = 50,
        dedupe: Optional[SeenWindow] = None,
    ) -> None:
        self.group = group
        self.consumer_name = consumer_name
        self._client_factory = client_factory
        self.retry = retry or RetryPolicy()
        self.block_ms = block_ms
        self.count = count
        self.dedupe = dedupe if dedupe is not None else SeenWindow()
        self._client = None
        self._topics: List[str] = []
        self._handlers: Dict[str, Handler] = {}
        self._running = False
        self._stopping = False
        self.stats = {"received": 0, "dispatched": 0, "duplicates": 0, "malformed": 0, "handler_errors": 0}

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def running(self) -> bool:
        return self._running

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = await _connect(self._client_factory, self.retry, f"consumer {self.group}")
        log.info("consumer %s/%s connected", self.group, self.consumer_name)

    async def disconnect(self) -> None:
        self.stop()
        client, self._client = self._client, None
        if client is not None:
            await _close(client)
            log.info("consumer %s/%s disconnected", self.group, self.consumer_name)

    async def subscribe(self, topics: Iterable[str]) -> None:
        if self._client is None:
            raise NotConnectedError("consumer is not connected; call connect() first")
        for topic in topics:
            # create group if missing; '$' means only messages published from now on
            try:
                await self._client.xgroup_create(topic, self.group, id="$", mkstream=True)
            except redis.exceptions.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise
            if topic not in self._topics:
                self._topics.append(topic)

    def register_handler(self, topic: str, handler: Handler) -> None:
        self._handlers[topic] = handler

    def stop(self) -> None:
        if self._running:
            self._stopping = True

    async def run(self) -> None:
        if self._running:
            log.warning("consumer %s already running; ignoring run()", self.group)
            return
        if self._client is None:
            raise NotConnectedError("consumer is not connected; call connect() first")
        self._running = True
        self._stopping = False
        failures = 0
        try:
            while not self._stopping:
                streams = {t: ">" for t in self._topics}
                if not streams:
                    await asyncio.sleep(self.block_ms / 1000.0)
                    continue
                try:
                    resp = await self._client.xreadgroup(
                        self.group, self.consumer_name, streams, count=self.count, block=self.block_ms
                    )
                except TRANSIENT_ERRORS as e:
                    failures += 1
                    if failures >= self.retry.attempts:
                        raise BusConnectionError(f"consumer {self.group}: lost bus connection: {e}") from e
                    backoff = self.retry.delay(failures)
                    log.warning("read failed (%s); retry %d/%d in %.2fs", e, failures, self.retry.attempts - 1, backoff)
                    await asyncio.sleep(backoff)
                    continue
                failures = 0
                if not resp:
                    continue
                for stream, msgs in resp:
                    for msg_id, fields in msgs:
                        try:
                            await self._dispatch(stream, fields)
                        finally:
                            await self._client.xack(stream, self.group, msg_id)
        finally:
            self._running = False
            self._stopping = False

    async def _dispatch(self, stream: str, fields: Dict[str, Any]) -> None:
        self.stats["received"] += 1
        try:
            event = decode_message(fields)
        except MalformedRecordError as e:
            self.stats["malformed"] += 1
            log.warning("[%s] dropping malformed message: %s", stream, e)
            return

        if self.dedupe.seen_or_record(event_key(event)):
            self.stats["duplicates"] += 1
            log.debug("[%s] duplicate delivery dropped", stream)
            return

        handler = self._handlers.get(stream)
        if handler is None:
            return
        try:
            res = handler(event)
            if inspect.isawaitable(res):
                await res
            self.stats["dispatched"] += 1
        except Exception as e:
            self.stats["handler_errors"] += 1
            log.error("[%s] handler error: %s", stream, e)
