from __future__ import annotations

import uuid
from dataclasses import replace
from threading import Lock
from typing import Callable

from relay_core.errors import InvalidInputError, NotFoundError
from relay_hub.store.models import (
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    Message,
    normalize_message_role,
    now_millis,
)


DEFAULT_MESSAGE_PAGE_LIMIT = 100


def _new_id() -> str:
    return str(uuid.uuid4())


class ConversationStore:
    """In-memory conversations and their append-only message logs.

    Conversations and messages are guarded by two independent locks so that
    listing conversations never waits on message appends. The locks are never
    nested; operations touching both take the conversations lock first and
    release it before taking the messages lock.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], int] = now_millis,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory
        self._conversations_lock = Lock()
        self._messages_lock = Lock()
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}

    def list_conversations(self) -> list[Conversation]:
        with self._conversations_lock:
            return list(self._conversations.values())

    def get_conversation(self, conversation_id: str) -> Conversation:
        with self._conversations_lock:
            conversation = self._conversations.get(str(conversation_id))
        if conversation is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")
        return conversation

    def create_conversation(self, external_key: str, *, title: str = DEFAULT_CONVERSATION_TITLE) -> Conversation:
        key = str(external_key or "")
        if not key.strip():
            raise InvalidInputError("Session key cannot be blank.")
        now = self._clock()
        conversation = Conversation(
            id=self._id_factory(),
            external_key=key,
            created_at=now,
            last_activity=now,
            title=str(title or "").strip() or DEFAULT_CONVERSATION_TITLE,
        )
        # The message log exists before the conversation is visible, so an
        # append never sees a listed conversation without somewhere to write.
        with self._messages_lock:
            self._messages.setdefault(conversation.id, [])
        with self._conversations_lock:
            self._conversations[conversation.id] = conversation
        return conversation

    def delete_conversation(self, conversation_id: str) -> bool:
        key = str(conversation_id)
        with self._conversations_lock:
            removed = self._conversations.pop(key, None)
        with self._messages_lock:
            purged = self._messages.pop(key, None)
        return removed is not None or purged is not None

    def append_message(self, conversation_id: str, role: str, content: str) -> Message:
        key = str(conversation_id)
        normalized_role = normalize_message_role(role)
        with self._conversations_lock:
            if key not in self._conversations:
                raise NotFoundError(f"Conversation not found: {conversation_id}")
        with self._messages_lock:
            log = self._messages.get(key)
            if log is None:
                # Deleted between the two lock scopes.
                raise NotFoundError(f"Conversation not found: {conversation_id}")
            message = Message(
                id=self._id_factory(),
                conversation_id=key,
                role=normalized_role,
                content=str(content),
                timestamp=self._clock(),
            )
            log.append(message)
        self._touch(key, message.timestamp)
        return message

    def get_messages(
        self,
        conversation_id: str,
        limit: int = DEFAULT_MESSAGE_PAGE_LIMIT,
        offset: int = 0,
    ) -> list[Message]:
        safe_limit = max(0, int(limit))
        safe_offset = max(0, int(offset))
        with self._messages_lock:
            log = list(self._messages.get(str(conversation_id)) or [])
        # sorted() is stable, so equal timestamps keep insertion order.
        ordered = sorted(log, key=lambda message: message.timestamp)
        return ordered[safe_offset : safe_offset + safe_limit]

    def message_count(self, conversation_id: str) -> int:
        with self._messages_lock:
            return len(self._messages.get(str(conversation_id)) or [])

    def _touch(self, conversation_id: str, timestamp: int) -> None:
        with self._conversations_lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return
            if timestamp <= conversation.last_activity:
                return
            self._conversations[conversation_id] = replace(conversation, last_activity=timestamp)
