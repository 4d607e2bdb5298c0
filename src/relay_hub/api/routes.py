from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from relay_hub.store import DEFAULT_MESSAGE_PAGE_LIMIT


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload.") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload.")
    return payload


def _required_text(payload: dict[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"'{field}' must be a string.")
    return value


def register_relay_routes(
    app: FastAPI,
    *,
    state: Any,
    logger: logging.Logger,
    iso_now: Callable[[], str],
    event_type_message: str,
) -> None:
    @app.get("/health", response_class=PlainTextResponse)
    def health() -> str:
        return "OK"

    @app.get("/api/chats")
    def api_list_chats() -> list[dict[str, Any]]:
        return state.chat_service.list_chats()

    @app.post("/api/chats")
    async def api_create_chat(request: Request) -> JSONResponse:
        payload = await _json_object(request)
        chat = state.chat_service.create_chat(_required_text(payload, "sessionId"))
        return JSONResponse(status_code=201, content=chat)

    @app.get("/api/chats/{chat_id}")
    def api_chat(chat_id: str) -> dict[str, Any]:
        return state.chat_service.chat(chat_id)

    @app.delete("/api/chats/{chat_id}")
    def api_delete_chat(chat_id: str) -> Response:
        state.chat_service.delete_chat(chat_id)
        return Response(status_code=204)

    @app.post("/api/chats/{chat_id}/messages")
    async def api_send_message(chat_id: str, request: Request) -> dict[str, Any]:
        payload = await _json_object(request)
        content = _required_text(payload, "content")
        # The assistant call blocks for up to its timeout; it runs on the turn
        # pool so the default executor stays free for everything else.
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(state.turn_pool, state.chat_service.send_message, chat_id, content)

    @app.get("/api/chats/{chat_id}/messages")
    def api_chat_messages(
        chat_id: str,
        limit: int = Query(DEFAULT_MESSAGE_PAGE_LIMIT, ge=0),
        offset: int = Query(0, ge=0),
    ) -> list[dict[str, Any]]:
        return state.chat_service.chat_messages(chat_id, limit=limit, offset=offset)

    @app.websocket("/ws/chats/{chat_id}")
    async def ws_chat(websocket: WebSocket, chat_id: str) -> None:
        await websocket.accept()
        subscriber = state.event_service.attach(chat_id, loop=asyncio.get_running_loop())
        logger.debug("Chat websocket connected chat_id=%s", chat_id)

        async def stream_events() -> None:
            while True:
                frame = await subscriber.next_event()
                if frame is None:
                    break
                await websocket.send_text(frame)

        async def consume_input() -> None:
            while True:
                try:
                    message = await websocket.receive_text()
                except WebSocketDisconnect:
                    return
                if not message.strip():
                    continue
                payload: Any = None
                try:
                    payload = json.loads(message)
                except json.JSONDecodeError:
                    payload = None
                if isinstance(payload, dict) and str(payload.get("type") or "") == "ping":
                    await websocket.send_text(
                        json.dumps({"type": "pong", "payload": {"at": iso_now()}})
                    )
                    continue
                state.event_service.publish(chat_id, {"type": event_type_message, "data": message})

        sender = asyncio.create_task(stream_events())
        receiver = asyncio.create_task(consume_input())
        try:
            done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                exc = task.exception()
                if exc and not isinstance(exc, WebSocketDisconnect):
                    raise exc
        except WebSocketDisconnect:
            pass
        finally:
            state.event_service.detach(chat_id, subscriber)
            if not sender.done():
                sender.cancel()
            if not receiver.done():
                receiver.cancel()
            logger.debug("Chat websocket disconnected chat_id=%s", chat_id)
