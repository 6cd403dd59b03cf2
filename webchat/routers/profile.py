"""
Profile API: GET/PUT /profile and POST /profile/learn.

/profile/learn is called by the agent with a service key and is rate
limited per caller; everything else acts for the signed-in user.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from webchat.config import get_settings
from webchat.dependencies import (
    AuthError,
    get_rate_limiter,
    get_request_ip,
    read_json_body,
    require_service_token,
    require_user_id,
)
from webchat.envelope import error_response
from webchat.learning import merge_learned_context, validate_insights, validate_learn_body
from webchat.models import InsightInput
from webchat.profile import profile_from_row, profile_to_row
from webchat.rate_limit import RateLimiter
from webchat.storage import profile_store, signal_store

logger = logging.getLogger("webchat")

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("")
async def get_profile(request: Request) -> JSONResponse:
    """
    Return 200 with { profile } where profile is null when the user has none yet.
    """
    try:
        user_id = require_user_id(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    try:
        row = profile_store.get_profile_row(user_id)
    except Exception as exc:
        logger.exception("get_profile_row failed")
        return error_response(500, "STORAGE_ERROR", str(exc))

    if row is None:
        return JSONResponse(status_code=200, content={"profile": None})
    return JSONResponse(status_code=200, content={"profile": profile_from_row(row)})


@router.put("")
async def put_profile(request: Request) -> JSONResponse:
    try:
        user_id = require_user_id(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    try:
        body = await read_json_body(request)
    except ValueError:
        return error_response(400, "MALFORMED_REQUEST", "Invalid JSON")
    if not isinstance(body, dict):
        return error_response(400, "MALFORMED_REQUEST", "Invalid JSON")

    try:
        existing_prefs = profile_store.get_preferences(user_id)
        stored = profile_store.upsert_profile(profile_to_row(body, user_id, existing_prefs))
    except Exception as exc:
        logger.exception("upsert_profile failed")
        return error_response(500, "STORAGE_ERROR", str(exc))

    return JSONResponse(status_code=200, content={"profile": profile_from_row(stored)})


@router.post("/learn")
async def learn(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> JSONResponse:
    """
    Ingest learned insights. Body: { "userId": uuid, "insights": [{dimension, insight, confidence, evidence?}] }.
    Returns 200 with { inserted, appendedToProfile, profileCreated }; 429 when rate limited.
    """
    try:
        require_service_token(request, get_settings().agent_learn_api_key)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    try:
        body = await read_json_body(request)
    except ValueError:
        return error_response(400, "MALFORMED_REQUEST", "Invalid JSON")

    body_error = validate_learn_body(body)
    if body_error:
        return error_response(400, "MALFORMED_REQUEST", body_error)

    user_id: str = body["userId"]
    ip = get_request_ip(request)
    if not await limiter.check(f"agent-learn:{ip or 'unknown'}:{user_id}"):
        return error_response(429, "RATE_LIMITED", "Rate limit exceeded")

    insight_error, details = validate_insights(body["insights"])
    if insight_error:
        return error_response(400, "MALFORMED_REQUEST", insight_error, details=details)

    try:
        insights = [InsightInput.model_validate(item).model_dump() for item in body["insights"]]
    except ValidationError as exc:
        details = [{"path": list(err["loc"]), "message": err["msg"]} for err in exc.errors()]
        return error_response(400, "MALFORMED_REQUEST", "Invalid insight", details=details)

    try:
        inserted = signal_store.insert_learning_events(user_id, insights)
        result = _write_back_learned_context(user_id, insights)
    except Exception as exc:
        logger.exception("learning ingestion failed user_id=%s", user_id)
        return error_response(500, "STORAGE_ERROR", str(exc))

    logger.info(
        "learn user_id=%s inserted=%s appended=%s created=%s",
        user_id,
        inserted,
        result["appendedToProfile"],
        result["profileCreated"],
    )
    return JSONResponse(status_code=200, content={"inserted": inserted, **result})


def _write_back_learned_context(user_id: str, insights: list) -> Dict[str, Any]:
    row = profile_store.get_profile_row(user_id)
    existing = row.get("learned_context") if row else []
    merged, appended = merge_learned_context(existing, insights)
    if appended == 0:
        return {"appendedToProfile": 0, "profileCreated": False}

    profile_created = False
    if row is None:
        profile_created = profile_store.create_learned_context(user_id, merged)
        if not profile_created:
            # Created concurrently; fall back to update.
            profile_store.update_learned_context(user_id, merged)
    else:
        profile_store.update_learned_context(user_id, merged)
    return {"appendedToProfile": appended, "profileCreated": profile_created}
