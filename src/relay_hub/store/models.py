from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from relay_core.errors import InvalidInputError


MESSAGE_ROLE_USER = "user"
MESSAGE_ROLE_ASSISTANT = "assistant"
MESSAGE_ROLE_SYSTEM = "system"
MESSAGE_ROLES = (
    MESSAGE_ROLE_USER,
    MESSAGE_ROLE_ASSISTANT,
    MESSAGE_ROLE_SYSTEM,
)
DEFAULT_CONVERSATION_TITLE = "Chat"


def now_millis() -> int:
    return int(time.time() * 1000)


def normalize_message_role(value: Any) -> str:
    role = str(value or "").strip().lower()
    if role not in MESSAGE_ROLES:
        raise InvalidInputError(f"role must be one of: {', '.join(MESSAGE_ROLES)}.")
    return role


@dataclass(frozen=True)
class Conversation:
    id: str
    external_key: str
    created_at: int
    last_activity: int
    title: str = DEFAULT_CONVERSATION_TITLE

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "externalKey": self.external_key,
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
            "title": self.title,
        }


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    role: str
    content: str
    timestamp: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
