import asyncio

import pytest

from liveanswers.core.errors import ChangeFeedError
from liveanswers.services.change_feed import ChangeEvent, ChangeFeed, InProcessChangeFeed, RedisChangeFeed, build_change_feed


def answer_event(question_id, value="x", op="insert"):
    return ChangeEvent(op, {"id": "a1", "questionId": question_id, "content": {"type": "text", "value": value}})


async def test_subscription_only_sees_its_question(feed):
    q1 = await feed.subscribe("q1")
    q2 = await feed.subscribe("q2")
    await feed.publish(answer_event("q1", "one"))
    assert (await q1.get(timeout=1)).full_document["content"]["value"] == "one"
    with pytest.raises(asyncio.TimeoutError):
        await q2.get(timeout=0.05)
    q1.close(); q2.close()


async def test_close_is_idempotent_and_ends_iteration(feed):
    sub = await feed.subscribe("q1")
    assert feed.subscriber_count == 1
    sub.close(); sub.close()
    assert feed.subscriber_count == 0 and sub.closed
    await feed.publish(answer_event("q1"))
    assert [e async for e in sub] == []


async def test_fail_surfaces_as_change_feed_error(feed):
    sub = await feed.subscribe("q1")
    sub.fail(RuntimeError("boom"))
    with pytest.raises(ChangeFeedError):
        await sub.get(timeout=1)
    sub.close()


async def test_feed_close_releases_everything(feed):
    subs = [await feed.subscribe(f"q{i}") for i in range(5)]
    await feed.close()
    assert feed.subscriber_count == 0 and all(s.closed for s in subs)


def test_change_event_json_round_trip():
    event = answer_event("q9", "v", op="update")
    assert ChangeEvent.from_json(event.to_json()) == event


# --- Redis backend, against an in-memory pub/sub double ---

class FakePubSub:
    def __init__(self, hub):
        self.hub = hub
        self.queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, channel):
        self.hub.subscribers.setdefault(channel, []).append(self)

    async def listen(self):
        while True:
            yield await self.queue.get()

    async def aclose(self):
        self.closed = True
        for subs in self.hub.subscribers.values():
            if self in subs:
                subs.remove(self)


class FakeRedis:
    def __init__(self):
        self.subscribers = {}
        self.pubsubs = []

    def pubsub(self):
        ps = FakePubSub(self)
        self.pubsubs.append(ps)
        return ps

    async def publish(self, channel, data):
        for ps in list(self.subscribers.get(channel, [])):
            ps.queue.put_nowait({"type": "message", "channel": channel, "data": data})
        return len(self.subscribers.get(channel, []))

    async def aclose(self):
        pass


async def test_redis_feed_filters_and_releases_pubsub():
    client = FakeRedis()
    feed = RedisChangeFeed(client, "answers:changes")
    sub = await feed.subscribe("q1")
    await feed.publish(answer_event("q2", "other"))
    await feed.publish(answer_event("q1", "mine"))
    event = await sub.get(timeout=1)
    assert event.full_document["content"]["value"] == "mine"

    sub.close()
    assert feed.subscriber_count == 0
    for _ in range(10):
        if client.pubsubs[0].closed:
            break
        await asyncio.sleep(0.01)
    assert client.pubsubs[0].closed
    assert client.subscribers["answers:changes"] == []


async def test_redis_reader_failure_fails_subscription():
    client = FakeRedis()
    feed = RedisChangeFeed(client, "answers:changes")
    sub = await feed.subscribe("q1")
    client.pubsubs[0].queue.put_nowait(None)  # not a mapping: the reader crashes
    with pytest.raises(ChangeFeedError):
        await sub.get(timeout=1)
    sub.close()


async def test_redis_reader_skips_non_object_payloads():
    client = FakeRedis()
    feed = RedisChangeFeed(client, "answers:changes")
    sub = await feed.subscribe("q1")
    for junk in ("[1, 2]", '"x"', '{"operationType": "insert", "fullDocument": [1]}', "not json"):
        await client.publish("answers:changes", junk)
    await feed.publish(answer_event("q1", "valid"))
    event = await sub.get(timeout=1)
    assert event.full_document["content"]["value"] == "valid"
    sub.close()


@pytest.mark.parametrize("raw", ["[1, 2]", '"x"', '{"operationType": "insert", "fullDocument": "doc"}'])
def test_change_event_rejects_non_object_json(raw):
    with pytest.raises(ValueError):
        ChangeEvent.from_json(raw)


def test_change_feed_base_is_abstract():
    with pytest.raises(TypeError):
        ChangeFeed()


def test_build_change_feed_backends(settings):
    assert isinstance(build_change_feed(settings), InProcessChangeFeed)
    settings.CHANGE_FEED_BACKEND = "redis"
    feed = build_change_feed(settings)
    assert isinstance(feed, RedisChangeFeed) and feed.channel == settings.CHANGE_FEED_CHANNEL
