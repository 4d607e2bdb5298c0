from __future__ import annotations

import asyncio
import json
import logging
from threading import Lock
from typing import Any, Protocol

from relay_core.logging import log_fields


LOGGER = logging.getLogger("relay_hub.subscribers")

SUBSCRIBER_QUEUE_MAX = 256


class SubscriberClosedError(RuntimeError):
    """Raised when sending to a subscriber whose connection has gone away."""


class SubscriberHandle(Protocol):
    def send(self, text: str) -> None: ...


def queue_put_drop_oldest(listener: asyncio.Queue[str | None], value: str | None) -> None:
    try:
        listener.put_nowait(value)
        return
    except asyncio.QueueFull:
        pass

    try:
        listener.get_nowait()
    except asyncio.QueueEmpty:
        return

    try:
        listener.put_nowait(value)
    except asyncio.QueueFull:
        return


class QueueSubscriber:
    """Subscriber handle that hands frames to a socket pump on its event loop.

    ``send`` may be called from any thread; frames are queued on the owning
    loop, so a pump awaiting ``next_event`` never occupies a worker thread.
    """

    def __init__(self, *, loop: asyncio.AbstractEventLoop, maxsize: int = SUBSCRIBER_QUEUE_MAX) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, text: str) -> None:
        if self._closed:
            raise SubscriberClosedError("Subscriber connection is closed.")
        try:
            self._loop.call_soon_threadsafe(queue_put_drop_oldest, self._queue, str(text))
        except RuntimeError as exc:
            raise SubscriberClosedError("Subscriber event loop is closed.") from exc

    async def next_event(self) -> str | None:
        """Return the next queued frame; ``None`` means the subscriber closed."""
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._loop.call_soon_threadsafe(queue_put_drop_oldest, self._queue, None)
        except RuntimeError:
            # Loop already closed; nothing is left to wake.
            return


class SubscriberRegistry:
    """Maps channel ids to the live handles interested in their events."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._channels: dict[str, set[SubscriberHandle]] = {}

    def subscribe(self, channel_id: str, handle: SubscriberHandle) -> None:
        with self._lock:
            self._channels.setdefault(str(channel_id), set()).add(handle)

    def unsubscribe(self, channel_id: str, handle: SubscriberHandle) -> None:
        key = str(channel_id)
        with self._lock:
            handles = self._channels.get(key)
            if handles is None:
                return
            handles.discard(handle)
            if not handles:
                del self._channels[key]

    def broadcast(self, channel_id: str, event: dict[str, Any]) -> int:
        """Send ``event`` to every subscriber of ``channel_id``.

        Handles whose ``send`` raises are unsubscribed once the fan-out is
        complete and are never retried. Returns the number of deliveries.
        """
        key = str(channel_id)
        handles = self.snapshot(key)
        if not handles:
            return 0
        text = json.dumps(event)
        failed: list[SubscriberHandle] = []
        for handle in handles:
            try:
                handle.send(text)
            except Exception as exc:
                LOGGER.warning(
                    "Dropping subscriber after failed send: %s",
                    exc,
                    extra=log_fields(
                        conversation_id=key,
                        component="subscribers",
                        operation="broadcast",
                        result="send_failed",
                        error_class=type(exc).__name__,
                    ),
                )
                failed.append(handle)
        for handle in failed:
            self.unsubscribe(key, handle)
        LOGGER.debug(
            "Broadcast event type=%s delivered=%d pruned=%d",
            event.get("type", ""),
            len(handles) - len(failed),
            len(failed),
            extra=log_fields(conversation_id=key, component="subscribers", operation="broadcast", result="ok"),
        )
        return len(handles) - len(failed)

    def connection_count(self, channel_id: str) -> int:
        with self._lock:
            return len(self._channels.get(str(channel_id)) or ())

    def snapshot(self, channel_id: str) -> set[SubscriberHandle]:
        with self._lock:
            return set(self._channels.get(str(channel_id)) or ())

    def channel_ids(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def clear_all(self) -> None:
        with self._lock:
            self._channels.clear()
