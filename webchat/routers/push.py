"""
Web push API: POST /push/subscribe, POST /push/unsubscribe, POST /push/send.

subscribe/unsubscribe act for the signed-in user; send is called by the
push relay with a service token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from webchat.config import get_settings
from webchat.dependencies import AuthError, get_push_sender, read_json_body, require_service_token, require_user_id
from webchat.envelope import error_response
from webchat.models import PushSubscription
from webchat.push import NotificationPayload, PushSender, can_subscribe, fan_out, parse_peer_id, select_targets
from webchat.storage import push_store

logger = logging.getLogger("webchat")

router = APIRouter(prefix="/push", tags=["push"])


async def _json_or_empty(request: Request) -> Dict[str, Any]:
    try:
        body = await read_json_body(request)
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/subscribe")
async def subscribe(request: Request) -> JSONResponse:
    """
    Store a browser subscription for the peer encoded in sessionKey.
    Body: { "subscription": {endpoint, keys: {p256dh, auth}}, "sessionKey": "agent:...:webchat:dm:<peer>" }.
    """
    body = await _json_or_empty(request)
    try:
        subscription = PushSubscription.model_validate(body.get("subscription"))
    except ValidationError as exc:
        details = [{"path": list(err["loc"]), "message": err["msg"]} for err in exc.errors()]
        return error_response(400, "MALFORMED_REQUEST", "Invalid subscription payload", details=details)

    session_key = body.get("sessionKey")
    if not session_key or not isinstance(session_key, str):
        return error_response(400, "MALFORMED_REQUEST", "Session key is required")

    try:
        user_id = require_user_id(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    peer_id = parse_peer_id(session_key, get_settings().gateway_agent_id)
    if not can_subscribe(peer_id, user_id):
        return error_response(403, "FORBIDDEN", "Forbidden")

    try:
        push_store.upsert_subscription(
            user_id=user_id,
            endpoint=subscription.endpoint,
            p256dh=subscription.keys.p256dh,
            auth=subscription.keys.auth,
            peer_id=peer_id,
            user_agent=request.headers.get("user-agent"),
        )
    except Exception as exc:
        logger.exception("upsert_subscription failed")
        return error_response(500, "STORAGE_ERROR", str(exc))

    return JSONResponse(status_code=200, content={"ok": True})


@router.post("/unsubscribe")
async def unsubscribe(request: Request) -> JSONResponse:
    body = await _json_or_empty(request)
    endpoint = body.get("endpoint")
    if not endpoint or not isinstance(endpoint, str):
        return error_response(400, "MALFORMED_REQUEST", "Endpoint is required")

    try:
        user_id = require_user_id(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    try:
        push_store.delete_subscription(endpoint, user_id=user_id)
    except Exception as exc:
        logger.exception("delete_subscription failed")
        return error_response(500, "STORAGE_ERROR", str(exc))

    return JSONResponse(status_code=200, content={"ok": True})


@router.post("/send")
async def send(request: Request, sender: Optional[PushSender] = Depends(get_push_sender)) -> JSONResponse:
    """
    Fan a notification out to every subscription routed to the session's peer.
    Returns 200 with { ok, delivered, failed } even when some deliveries fail.
    """
    settings = get_settings()
    try:
        require_service_token(request, settings.web_push_api_token)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    body = await _json_or_empty(request)
    session_key = body.get("sessionKey")
    if not session_key or not isinstance(session_key, str):
        return error_response(400, "MALFORMED_REQUEST", "Session key is required")

    peer_id = parse_peer_id(session_key, settings.gateway_agent_id)
    if peer_id is None:
        return error_response(400, "MALFORMED_REQUEST", "Invalid session key")

    if sender is None:
        return error_response(500, "CONFIGURATION_ERROR", "Missing VAPID keys")

    try:
        subscriptions = push_store.list_subscriptions()
    except Exception as exc:
        logger.exception("list_subscriptions failed")
        return error_response(500, "STORAGE_ERROR", str(exc))

    payload = NotificationPayload(
        title=str(body.get("title") or "New message"),
        body=str(body.get("body") or "You have a new message."),
        url=str(body.get("url") or "/chat"),
        icon=str(body.get("icon") or "/brand/favicon.png"),
        badge=str(body.get("badge") or "/brand/favicon.png"),
    )
    targets = select_targets(subscriptions, peer_id)
    report = fan_out(targets, sender, payload, on_gone=push_store.delete_subscription)
    logger.info(
        "push send peer=%s targets=%s delivered=%s failed=%s removed=%s",
        peer_id,
        len(targets),
        report.delivered,
        report.failed,
        report.removed,
    )
    return JSONResponse(
        status_code=200,
        content={"ok": True, "delivered": report.delivered, "failed": report.failed},
    )
