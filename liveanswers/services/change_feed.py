"""
Answer change feed.

The answer store publishes one ChangeEvent per committed write. Stream endpoints
subscribe per request with a question filter and own the returned Subscription:
iterate it (or call ``get``) for events and ``close()`` it exactly once when done.
``close()`` never awaits, so it is safe to call from a cancelled task.

Two backends:

* InProcessChangeFeed: fan-out inside one process, one unbounded queue per subscription.
* RedisChangeFeed: events travel over a Redis pub/sub channel so several workers
  share the feed. Each subscription owns its own pubsub connection.
"""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

import redis.asyncio as redis

from liveanswers.core.errors import ChangeFeedError

logger = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"

_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    operation_type: str
    full_document: Dict[str, Any] = field(default_factory=dict)

    @property
    def question_id(self) -> Optional[str]:
        return self.full_document.get("questionId")

    def to_json(self) -> str:
        return json.dumps({"operationType": self.operation_type, "fullDocument": self.full_document})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("change event is not a JSON object")
        document = data.get("fullDocument") or {}
        if not isinstance(document, dict):
            raise ValueError("fullDocument is not a JSON object")
        return cls(operation_type=data["operationType"], full_document=document)


class Subscription:
    """A filtered, cancellable view of the change feed."""

    def __init__(self, feed: "ChangeFeed", question_id: str):
        self.question_id = question_id
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: ChangeEvent) -> bool:
        return event.question_id == self.question_id

    def deliver(self, event: ChangeEvent) -> None:
        if not self._closed and self.matches(event):
            self._queue.put_nowait(event)

    def fail(self, exc: BaseException) -> None:
        if not self._closed:
            self._queue.put_nowait(ChangeFeedError(f"change feed failed: {exc}"))

    async def get(self, timeout: Optional[float] = None) -> ChangeEvent:
        """Next matching event.

        Raises StopAsyncIteration once closed, ChangeFeedError if the feed failed,
        and asyncio.TimeoutError if ``timeout`` elapses first.
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, ChangeFeedError):
            raise item
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._discard(self)
        self._release()
        self._queue.put_nowait(_CLOSED)

    def _release(self) -> None:
        """Backend-specific teardown. Must not block."""


class ChangeFeed(ABC):
    """Bookkeeping shared by the feed backends."""

    def __init__(self) -> None:
        self._subscriptions: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @abstractmethod
    async def subscribe(self, question_id: str) -> Subscription:
        ...

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        ...

    def _discard(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()


class InProcessChangeFeed(ChangeFeed):

    async def subscribe(self, question_id: str) -> Subscription:
        subscription = Subscription(self, question_id)
        self._subscriptions.add(subscription)
        logger.debug("Subscribed to answers for question %s (%d open)", question_id, self.subscriber_count)
        return subscription

    async def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            subscription.deliver(event)


class RedisSubscription(Subscription):

    def __init__(self, feed: "RedisChangeFeed", question_id: str, pubsub):
        super().__init__(feed, question_id)
        self._pubsub = pubsub
        self._reader: Optional[asyncio.Task] = None

    def start(self, channel: str) -> None:
        self._reader = asyncio.create_task(self._read(channel))

    async def _read(self, channel: str) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = ChangeEvent.from_json(message["data"])
                except (ValueError, KeyError):
                    logger.warning("Dropping malformed change event on %s", channel)
                    continue
                self.deliver(event)
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("Change feed reader for question %s failed: %s", self.question_id, exc)
            self.fail(exc)
        finally:
            await self._pubsub.aclose()

    def _release(self) -> None:
        if self._reader is not None:
            self._reader.cancel()


class RedisChangeFeed(ChangeFeed):

    def __init__(self, client: redis.Redis, channel: str):
        super().__init__()
        self.client = client
        self.channel = channel

    @classmethod
    def from_url(cls, url: str, channel: str) -> "RedisChangeFeed":
        return cls(redis.from_url(url, decode_responses=True), channel)

    async def subscribe(self, question_id: str) -> Subscription:
        pubsub = self.client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except redis.RedisError as exc:
            await pubsub.aclose()
            raise ChangeFeedError(f"could not subscribe to {self.channel}: {exc}") from exc
        subscription = RedisSubscription(self, question_id, pubsub)
        subscription.start(self.channel)
        self._subscriptions.add(subscription)
        return subscription

    async def publish(self, event: ChangeEvent) -> None:
        try:
            await self.client.publish(self.channel, event.to_json())
        except redis.RedisError as exc:
            raise ChangeFeedError(f"could not publish to {self.channel}: {exc}") from exc

    async def close(self) -> None:
        await super().close()
        await self.client.aclose()


def build_change_feed(settings) -> ChangeFeed:
    if settings.CHANGE_FEED_BACKEND == "redis":
        logger.info("Using Redis change feed on channel %s", settings.CHANGE_FEED_CHANNEL)
        return RedisChangeFeed.from_url(settings.REDIS_URL, settings.CHANGE_FEED_CHANNEL)
    return InProcessChangeFeed()
