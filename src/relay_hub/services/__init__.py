"""Relay Hub service modules."""

__all__ = [
    "chat_service",
    "event_service",
]
