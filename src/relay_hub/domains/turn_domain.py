from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Any

from relay_core.errors import InvalidInputError, NotFoundError, TypedRelayError
from relay_core.logging import log_fields
from relay_hub.integrations.assistant_cli import TurnExecutor
from relay_hub.runtime.subscribers import SubscriberRegistry
from relay_hub.store import (
    DEFAULT_MESSAGE_PAGE_LIMIT,
    MESSAGE_ROLE_ASSISTANT,
    MESSAGE_ROLE_USER,
    Conversation,
    ConversationStore,
    Message,
)


LOGGER = logging.getLogger("relay_hub.turns")

EVENT_TYPE_MESSAGE = "message"


def message_event(text: str) -> dict[str, Any]:
    return {"type": EVENT_TYPE_MESSAGE, "data": str(text)}


class TurnOrchestrator:
    """Sequences a user turn through the store, the assistant and subscribers.

    Turns on the same conversation run one at a time; turns on different
    conversations never wait on each other.
    """

    def __init__(
        self,
        *,
        store: ConversationStore,
        executor: TurnExecutor,
        registry: SubscriberRegistry,
    ) -> None:
        self.store = store
        self.executor = executor
        self.registry = registry
        self._turn_locks_lock = Lock()
        self._turn_locks: dict[str, Lock] = {}

    def list_conversations(self) -> list[Conversation]:
        return self.store.list_conversations()

    def get_conversation(self, conversation_id: str) -> Conversation:
        return self.store.get_conversation(conversation_id)

    def create_conversation(self, external_key: str) -> Conversation:
        conversation = self.store.create_conversation(external_key)
        LOGGER.info(
            "Conversation created",
            extra=log_fields(conversation_id=conversation.id, component="turns", operation="create", result="ok"),
        )
        return conversation

    def delete_conversation(self, conversation_id: str) -> None:
        key = str(conversation_id)
        removed = self.store.delete_conversation(key)
        self._forget_session(key, operation="delete")
        with self._turn_locks_lock:
            self._turn_locks.pop(key, None)
        LOGGER.info(
            "Conversation deleted",
            extra=log_fields(
                conversation_id=key,
                component="turns",
                operation="delete",
                result="ok" if removed else "absent",
            ),
        )

    def get_messages(
        self,
        conversation_id: str,
        *,
        limit: int = DEFAULT_MESSAGE_PAGE_LIMIT,
        offset: int = 0,
    ) -> list[Message]:
        return self.store.get_messages(conversation_id, limit=limit, offset=offset)

    def submit_user_turn(self, conversation_id: str, text: str) -> Message:
        key = str(conversation_id or "")
        if not key.strip():
            raise InvalidInputError("Conversation id cannot be blank.")
        if not str(text or "").strip():
            raise InvalidInputError("Message cannot be empty.")

        self.store.get_conversation(key)
        started = time.monotonic()
        with self._turn_lock(key):
            self.store.append_message(key, MESSAGE_ROLE_USER, text)
            try:
                reply = self.executor.converse(key, text)
            except TypedRelayError as exc:
                LOGGER.warning(
                    "Turn failed: %s",
                    exc,
                    extra=log_fields(
                        conversation_id=key,
                        component="turns",
                        operation="submit",
                        result="failed",
                        duration_ms=int((time.monotonic() - started) * 1000),
                        error_class=type(exc).__name__,
                    ),
                )
                raise
            try:
                assistant_message = self.store.append_message(key, MESSAGE_ROLE_ASSISTANT, reply)
            except NotFoundError:
                # Deleted while the assistant was answering; the session this
                # turn just established must not outlive the conversation.
                self._forget_session(key, operation="submit")
                raise
            self._broadcast_reply(key, assistant_message)
        LOGGER.info(
            "Turn completed",
            extra=log_fields(
                conversation_id=key,
                component="turns",
                operation="submit",
                result="ok",
                duration_ms=int((time.monotonic() - started) * 1000),
            ),
        )
        return assistant_message

    def _forget_session(self, conversation_id: str, *, operation: str) -> None:
        forget_session = getattr(self.executor, "forget_session", None)
        if not callable(forget_session):
            return
        try:
            forget_session(conversation_id)
        except Exception as exc:
            LOGGER.warning(
                "Failed to forget assistant session: %s",
                exc,
                extra=log_fields(
                    conversation_id=conversation_id,
                    component="turns",
                    operation=operation,
                    result="forget_failed",
                    error_class=type(exc).__name__,
                ),
            )

    def _turn_lock(self, conversation_id: str) -> Lock:
        with self._turn_locks_lock:
            lock = self._turn_locks.get(conversation_id)
            if lock is None:
                lock = Lock()
                self._turn_locks[conversation_id] = lock
            return lock

    def _broadcast_reply(self, conversation_id: str, message: Message) -> None:
        # The persisted message is the outcome of the turn; notification
        # failures never undo it.
        try:
            self.registry.broadcast(conversation_id, message_event(message.content))
        except Exception as exc:
            LOGGER.warning(
                "Failed to broadcast assistant reply: %s",
                exc,
                extra=log_fields(
                    conversation_id=conversation_id,
                    component="turns",
                    operation="broadcast",
                    result="failed",
                    error_class=type(exc).__name__,
                ),
            )
