from relay_hub.runtime.subscribers import (
    QueueSubscriber,
    SubscriberClosedError,
    SubscriberHandle,
    SubscriberRegistry,
)

__all__ = [
    "QueueSubscriber",
    "SubscriberClosedError",
    "SubscriberHandle",
    "SubscriberRegistry",
]
