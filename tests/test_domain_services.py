from __future__ import annotations

import asyncio
import json
import unittest
from types import SimpleNamespace
from unittest.mock import Mock

from relay_core.errors import NotFoundError
from relay_hub.runtime import QueueSubscriber, SubscriberRegistry
from relay_hub.services.chat_service import ChatService
from relay_hub.services.event_service import EventService
from relay_hub.store import Conversation, Message


def _conversation(conversation_id: str = "chat-1") -> Conversation:
    return Conversation(id=conversation_id, external_key="s1", created_at=10, last_activity=20, title="Chat")


class ChatServiceTests(unittest.TestCase):
    def test_list_chats_serializes_camel_case_payloads(self) -> None:
        domain = SimpleNamespace(list_conversations=Mock(return_value=[_conversation()]))
        service = ChatService(domain=domain)

        self.assertEqual(
            service.list_chats(),
            [{"id": "chat-1", "externalKey": "s1", "createdAt": 10, "lastActivity": 20, "title": "Chat"}],
        )

    def test_chat_propagates_not_found(self) -> None:
        domain = SimpleNamespace(get_conversation=Mock(side_effect=NotFoundError("Conversation missing not found.")))
        service = ChatService(domain=domain)

        with self.assertRaises(NotFoundError):
            service.chat("missing")

    def test_chat_messages_forwards_paging(self) -> None:
        message = Message(id="m1", conversation_id="chat-1", role="user", content="hello", timestamp=5)
        domain = SimpleNamespace(get_messages=Mock(return_value=[message]))
        service = ChatService(domain=domain)

        payload = service.chat_messages("chat-1", limit=5, offset=2)

        domain.get_messages.assert_called_once_with("chat-1", limit=5, offset=2)
        self.assertEqual(
            payload,
            [{"id": "m1", "conversationId": "chat-1", "role": "user", "content": "hello", "timestamp": 5}],
        )

    def test_send_message_returns_assistant_payload(self) -> None:
        reply = Message(id="m2", conversation_id="chat-1", role="assistant", content="hi there", timestamp=6)
        domain = SimpleNamespace(submit_user_turn=Mock(return_value=reply))
        service = ChatService(domain=domain)

        self.assertEqual(service.send_message("chat-1", "hello")["content"], "hi there")
        domain.submit_user_turn.assert_called_once_with("chat-1", "hello")

    def test_create_and_delete_forward_to_domain(self) -> None:
        domain = SimpleNamespace(
            create_conversation=Mock(return_value=_conversation()),
            delete_conversation=Mock(return_value=None),
        )
        service = ChatService(domain=domain)

        self.assertEqual(service.create_chat("s1")["externalKey"], "s1")
        service.delete_chat("chat-1")

        domain.create_conversation.assert_called_once_with("s1")
        domain.delete_conversation.assert_called_once_with("chat-1")


class EventServiceTests(unittest.TestCase):
    def test_attach_publish_detach(self) -> None:
        registry = SubscriberRegistry()
        service = EventService(registry=registry)

        async def scenario() -> None:
            subscriber = service.attach("chat-1", loop=asyncio.get_running_loop())
            delivered = service.publish("chat-1", {"type": "message", "data": "hi"})

            self.assertIsInstance(subscriber, QueueSubscriber)
            self.assertEqual(delivered, 1)
            frame = await asyncio.wait_for(subscriber.next_event(), 1.0)
            self.assertEqual(json.loads(frame or ""), {"type": "message", "data": "hi"})

            service.detach("chat-1", subscriber)

            self.assertTrue(subscriber.closed)
            self.assertIsNone(await asyncio.wait_for(subscriber.next_event(), 1.0))
            self.assertEqual(service.connection_count("chat-1"), 0)
            self.assertEqual(service.publish("chat-1", {"type": "message", "data": "late"}), 0)

        asyncio.run(scenario())
