from relay_hub.domains.turn_domain import EVENT_TYPE_MESSAGE, TurnOrchestrator, message_event

__all__ = [
    "EVENT_TYPE_MESSAGE",
    "TurnOrchestrator",
    "message_event",
]
