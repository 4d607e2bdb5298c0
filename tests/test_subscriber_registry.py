from __future__ import annotations

import asyncio
import json
import threading
import unittest

import pytest

from relay_hub.runtime import QueueSubscriber, SubscriberClosedError, SubscriberRegistry
from relay_hub.runtime.subscribers import queue_put_drop_oldest


class _RecordingHandle:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[str] = []
        self.attempts = 0

    def send(self, text: str) -> None:
        self.attempts += 1
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(text)


class SubscriberRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = SubscriberRegistry()

    def test_subscribe_and_count(self) -> None:
        first = _RecordingHandle()
        second = _RecordingHandle()
        self.registry.subscribe("chat-1", first)
        self.registry.subscribe("chat-1", second)
        self.registry.subscribe("chat-1", first)

        self.assertEqual(self.registry.connection_count("chat-1"), 2)
        self.assertEqual(self.registry.snapshot("chat-1"), {first, second})
        self.assertEqual(self.registry.connection_count("chat-2"), 0)

    def test_unsubscribe_drops_empty_channel(self) -> None:
        handle = _RecordingHandle()
        self.registry.subscribe("chat-1", handle)

        self.registry.unsubscribe("chat-1", handle)
        self.registry.unsubscribe("chat-1", handle)
        self.registry.unsubscribe("unknown", handle)

        self.assertEqual(self.registry.connection_count("chat-1"), 0)
        self.assertEqual(self.registry.channel_ids(), [])

    def test_snapshot_is_a_copy(self) -> None:
        handle = _RecordingHandle()
        self.registry.subscribe("chat-1", handle)

        snapshot = self.registry.snapshot("chat-1")
        snapshot.clear()

        self.assertEqual(self.registry.connection_count("chat-1"), 1)

    def test_broadcast_without_subscribers_is_a_noop(self) -> None:
        self.assertEqual(self.registry.broadcast("nobody", {"type": "message", "data": "hi"}), 0)
        self.assertEqual(self.registry.channel_ids(), [])

    def test_broadcast_delivers_serialized_event_to_channel_only(self) -> None:
        listener = _RecordingHandle()
        bystander = _RecordingHandle()
        self.registry.subscribe("chat-1", listener)
        self.registry.subscribe("chat-2", bystander)

        delivered = self.registry.broadcast("chat-1", {"type": "message", "data": "hi there"})

        self.assertEqual(delivered, 1)
        self.assertEqual([json.loads(text) for text in listener.sent], [{"type": "message", "data": "hi there"}])
        self.assertEqual(bystander.sent, [])

    def test_broadcast_prunes_exactly_the_failed_handles(self) -> None:
        healthy = _RecordingHandle()
        broken = _RecordingHandle(fail=True)
        also_broken = _RecordingHandle(fail=True)
        for handle in (healthy, broken, also_broken):
            self.registry.subscribe("chat-1", handle)

        delivered = self.registry.broadcast("chat-1", {"type": "message", "data": "one"})

        self.assertEqual(delivered, 1)
        self.assertEqual(self.registry.snapshot("chat-1"), {healthy})
        self.assertEqual(self.registry.connection_count("chat-1"), 1)

        self.registry.broadcast("chat-1", {"type": "message", "data": "two"})
        self.assertEqual(broken.attempts, 1)
        self.assertEqual(also_broken.attempts, 1)
        self.assertEqual(len(healthy.sent), 2)

    def test_channel_removed_when_every_handle_fails(self) -> None:
        self.registry.subscribe("chat-1", _RecordingHandle(fail=True))

        self.registry.broadcast("chat-1", {"type": "message", "data": "x"})

        self.assertEqual(self.registry.channel_ids(), [])

    def test_clear_all(self) -> None:
        self.registry.subscribe("chat-1", _RecordingHandle())
        self.registry.subscribe("chat-2", _RecordingHandle())

        self.registry.clear_all()

        self.assertEqual(self.registry.connection_count("chat-1"), 0)
        self.assertEqual(self.registry.connection_count("chat-2"), 0)

    def test_concurrent_subscribe_broadcast_and_unsubscribe(self) -> None:
        handles = [_RecordingHandle(fail=index % 5 == 0) for index in range(50)]
        errors: list[BaseException] = []

        def churn(handle: _RecordingHandle) -> None:
            try:
                self.registry.subscribe("chat-1", handle)
                self.registry.broadcast("chat-1", {"type": "message", "data": "tick"})
                self.registry.unsubscribe("chat-1", handle)
            except BaseException as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=churn, args=(handle,)) for handle in handles]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(self.registry.connection_count("chat-1"), 0)


def test_queue_subscriber_delivers_then_closes() -> None:
    async def scenario() -> None:
        subscriber = QueueSubscriber(loop=asyncio.get_running_loop())
        subscriber.send("frame-1")

        assert await asyncio.wait_for(subscriber.next_event(), 1.0) == "frame-1"
        subscriber.close()
        assert subscriber.closed is True
        assert await asyncio.wait_for(subscriber.next_event(), 1.0) is None
        with pytest.raises(SubscriberClosedError):
            subscriber.send("frame-2")

    asyncio.run(scenario())


def test_queue_subscriber_accepts_frames_from_worker_threads() -> None:
    async def scenario() -> list[str | None]:
        subscriber = QueueSubscriber(loop=asyncio.get_running_loop())
        worker = threading.Thread(target=lambda: [subscriber.send(f"frame-{i}") for i in range(3)])
        worker.start()
        await asyncio.get_running_loop().run_in_executor(None, worker.join)
        return [await asyncio.wait_for(subscriber.next_event(), 1.0) for _ in range(3)]

    assert asyncio.run(scenario()) == ["frame-0", "frame-1", "frame-2"]


def test_queue_subscriber_rejects_sends_after_loop_closes() -> None:
    loop = asyncio.new_event_loop()
    subscriber = QueueSubscriber(loop=loop)
    loop.close()

    with pytest.raises(SubscriberClosedError):
        subscriber.send("late")
    subscriber.close()
    assert subscriber.closed is True


def test_closed_queue_subscriber_is_pruned_on_broadcast() -> None:
    async def scenario() -> None:
        registry = SubscriberRegistry()
        loop = asyncio.get_running_loop()
        open_subscriber = QueueSubscriber(loop=loop)
        closed_subscriber = QueueSubscriber(loop=loop)
        registry.subscribe("chat-1", open_subscriber)
        registry.subscribe("chat-1", closed_subscriber)
        closed_subscriber.close()

        assert registry.broadcast("chat-1", {"type": "message", "data": "hi"}) == 1
        assert registry.snapshot("chat-1") == {open_subscriber}
        frame = await asyncio.wait_for(open_subscriber.next_event(), 1.0)
        assert json.loads(frame or "") == {"type": "message", "data": "hi"}

    asyncio.run(scenario())


def test_queue_put_drop_oldest_keeps_newest_values() -> None:
    async def scenario() -> list[str | None]:
        listener: asyncio.Queue[str | None] = asyncio.Queue(maxsize=2)
        for value in ("a", "b", "c"):
            queue_put_drop_oldest(listener, value)
        return [listener.get_nowait(), listener.get_nowait()]

    assert asyncio.run(scenario()) == ["b", "c"]
