from relay_hub.store.conversation_store import DEFAULT_MESSAGE_PAGE_LIMIT, ConversationStore
from relay_hub.store.models import (
    MESSAGE_ROLE_ASSISTANT,
    MESSAGE_ROLE_SYSTEM,
    MESSAGE_ROLE_USER,
    MESSAGE_ROLES,
    Conversation,
    Message,
)

__all__ = [
    "Conversation",
    "ConversationStore",
    "DEFAULT_MESSAGE_PAGE_LIMIT",
    "MESSAGE_ROLES",
    "MESSAGE_ROLE_ASSISTANT",
    "MESSAGE_ROLE_SYSTEM",
    "MESSAGE_ROLE_USER",
    "Message",
]
