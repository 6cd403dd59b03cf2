"""
Session hints over a websocket: GET /hints/ws?sessionKey=...

Client frames:
  {"sessionKey": "..."}            switch the active conversation (resets state)
  {"messages": [{id, role, content}, ...]}   the full message list after an append
Server frames:
  {"hints": [...]}                 emitted after debounce/cooldown when the set changes
  {"error": {"code", "message"}}   for frames that cannot be processed
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import TypeAdapter, ValidationError

from webchat.dependencies import AuthError, require_user_id
from webchat.hints import SessionHintEngine
from webchat.models import Message

logger = logging.getLogger("webchat")

router = APIRouter(prefix="/hints", tags=["hints"])

_MESSAGES = TypeAdapter(List[Message])


def _engine_factory(websocket: WebSocket) -> Callable[[], SessionHintEngine]:
    return getattr(websocket.app.state, "hint_engine_factory", None) or SessionHintEngine


async def _drain(websocket: WebSocket, outbox: "asyncio.Queue[Any]") -> None:
    while True:
        frame = await outbox.get()
        await websocket.send_json(frame)


@router.websocket("/ws")
async def hints_socket(websocket: WebSocket) -> None:
    try:
        user_id = require_user_id(websocket)
    except AuthError as exc:
        logger.info("hints socket rejected: %s", exc)
        await websocket.close(code=1008)
        return

    await websocket.accept()
    engine = _engine_factory(websocket)()
    engine.set_session(websocket.query_params.get("sessionKey"))

    outbox: "asyncio.Queue[Any]" = asyncio.Queue()
    drain_task = asyncio.create_task(_drain(websocket, outbox))

    def on_hints_changed(hints: List[str]) -> None:
        outbox.put_nowait({"hints": hints})

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except (ValueError, KeyError, TypeError):
                # Binary frames carry no text payload.
                outbox.put_nowait({"error": {"code": "MALFORMED_REQUEST", "message": "Frame must be valid JSON"}})
                continue
            if not isinstance(frame, dict):
                outbox.put_nowait({"error": {"code": "MALFORMED_REQUEST", "message": "Frame must be an object"}})
                continue

            if "sessionKey" in frame:
                engine.set_session(frame.get("sessionKey"))
            if "messages" in frame:
                try:
                    messages = _MESSAGES.validate_python(frame["messages"])
                except ValidationError as exc:
                    outbox.put_nowait(
                        {"error": {"code": "MALFORMED_REQUEST", "message": exc.errors()[0]["msg"]}}
                    )
                    continue
                engine.process_message(messages, on_hints_changed)
    except WebSocketDisconnect:
        logger.debug("hints socket closed user_id=%s", user_id)
    finally:
        engine.close()
        drain_task.cancel()
        try:
            await drain_task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.warning("hints socket send failed user_id=%s: %s", user_id, exc)
