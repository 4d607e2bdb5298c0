from __future__ import annotations

from typing import Any

from relay_hub.store import DEFAULT_MESSAGE_PAGE_LIMIT


class ChatService:
    def __init__(self, *, domain: Any) -> None:
        self._domain = domain

    def list_chats(self) -> list[dict[str, Any]]:
        return [conversation.to_payload() for conversation in self._domain.list_conversations()]

    def chat(self, chat_id: str) -> dict[str, Any]:
        return self._domain.get_conversation(chat_id).to_payload()

    def create_chat(self, session_key: str) -> dict[str, Any]:
        return self._domain.create_conversation(session_key).to_payload()

    def delete_chat(self, chat_id: str) -> None:
        self._domain.delete_conversation(chat_id)

    def chat_messages(
        self,
        chat_id: str,
        *,
        limit: int = DEFAULT_MESSAGE_PAGE_LIMIT,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        return [message.to_payload() for message in self._domain.get_messages(chat_id, limit=limit, offset=offset)]

    def send_message(self, chat_id: str, content: str) -> dict[str, Any]:
        return self._domain.submit_user_turn(chat_id, content).to_payload()


__all__ = ["ChatService"]
