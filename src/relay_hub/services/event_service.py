from __future__ import annotations

import asyncio
from typing import Any

from relay_hub.runtime.subscribers import QueueSubscriber, SubscriberRegistry


class EventService:
    def __init__(self, *, registry: SubscriberRegistry) -> None:
        self._registry = registry

    def attach(self, chat_id: str, *, loop: asyncio.AbstractEventLoop) -> QueueSubscriber:
        subscriber = QueueSubscriber(loop=loop)
        self._registry.subscribe(chat_id, subscriber)
        return subscriber

    def detach(self, chat_id: str, subscriber: QueueSubscriber) -> None:
        subscriber.close()
        self._registry.unsubscribe(chat_id, subscriber)

    def publish(self, chat_id: str, event: dict[str, Any]) -> int:
        return self._registry.broadcast(chat_id, event)

    def connection_count(self, chat_id: str) -> int:
        return self._registry.connection_count(chat_id)


__all__ = ["EventService"]
