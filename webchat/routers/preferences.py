"""
Preference API: GET/PUT /pinned-sessions, GET/PUT /session-titles.

Both sub-keys live in the user's preference blob; writes always merge so
unrelated preference keys survive.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from webchat.dependencies import AuthError, read_json_body, require_user_id
from webchat.envelope import ErrorEnvelope, envelope_response, error_response
from webchat.normalize import (
    MAX_SESSION_TITLES,
    is_finite_number,
    PINNED_SESSIONS_PREF_KEY,
    SESSION_TITLES_PREF_KEY,
    merge_pinned_sessions,
    merge_session_titles,
    normalize_pinned_keys,
    normalize_session_key,
    normalize_stored_pinned_sessions,
    normalize_title_map,
)
from webchat.storage import profile_store

logger = logging.getLogger("webchat")

router = APIRouter(tags=["preferences"])


async def _read_object_body(request: Request) -> Dict[str, Any]:
    try:
        body = await read_json_body(request)
    except ValueError:
        body = None
    if not isinstance(body, dict):
        raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Invalid JSON")
    return body


def _load_preferences(user_id: str) -> Dict[str, Any]:
    try:
        return profile_store.get_preferences(user_id)
    except Exception as exc:
        logger.exception("loading preferences failed user_id=%s", user_id)
        raise ErrorEnvelope(500, "STORAGE_ERROR", str(exc)) from exc


def _save_preferences(user_id: str, preferences: Dict[str, Any]) -> None:
    try:
        profile_store.save_preferences(user_id, preferences)
    except Exception as exc:
        logger.exception("saving preferences failed user_id=%s", user_id)
        raise ErrorEnvelope(500, "STORAGE_ERROR", str(exc)) from exc


@router.get("/pinned-sessions")
async def get_pinned_sessions(request: Request) -> JSONResponse:
    try:
        user_id = require_user_id(request)
        prefs = _load_preferences(user_id)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))
    except ErrorEnvelope as exc:
        return envelope_response(exc)

    pinned = normalize_stored_pinned_sessions(prefs.get(PINNED_SESSIONS_PREF_KEY))
    return JSONResponse(status_code=200, content={"pinnedSessions": pinned})


@router.put("/pinned-sessions")
async def put_pinned_sessions(request: Request) -> JSONResponse:
    """
    Replace the pinned session list. Body: { "keys": [...], "updatedAtMs"?: number }.
    """
    try:
        user_id = require_user_id(request)
        body = await _read_object_body(request)
        raw_keys = body.get("keys")
        if not isinstance(raw_keys, list):
            raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Invalid keys list")

        keys = normalize_pinned_keys(raw_keys)
        raw_updated = body.get("updatedAtMs")
        if is_finite_number(raw_updated):
            updated_at_ms = raw_updated
        else:
            updated_at_ms = int(time.time() * 1000)

        prefs = _load_preferences(user_id)
        _save_preferences(user_id, merge_pinned_sessions(prefs, keys, updated_at_ms))
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))
    except ErrorEnvelope as exc:
        return envelope_response(exc)

    return JSONResponse(
        status_code=200,
        content={"pinnedSessions": {"keys": keys, "updatedAtMs": updated_at_ms}},
    )


@router.get("/session-titles")
async def get_session_titles(request: Request) -> JSONResponse:
    try:
        user_id = require_user_id(request)
        prefs = _load_preferences(user_id)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))
    except ErrorEnvelope as exc:
        return envelope_response(exc)

    titles = normalize_title_map(prefs.get(SESSION_TITLES_PREF_KEY))
    return JSONResponse(status_code=200, content={"titles": titles})


@router.put("/session-titles")
async def put_session_titles(request: Request) -> JSONResponse:
    """
    Merge titles. Body: { "set"?: {sessionKey: title}, "remove"?: [sessionKey] }.
    Removals are applied after the set, so they win for the same key.
    """
    try:
        user_id = require_user_id(request)
        body = await _read_object_body(request)

        raw_set = body.get("set")
        set_map = normalize_title_map(raw_set) if raw_set else {}
        if len(set_map) > MAX_SESSION_TITLES:
            raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Too many session titles in request")

        remove_keys: List[str] = []
        if "remove" in body:
            raw_remove = body["remove"]
            if not isinstance(raw_remove, list):
                raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Invalid remove list")
            for item in raw_remove:
                key = normalize_session_key(item)
                if key is None:
                    raise ErrorEnvelope(400, "MALFORMED_REQUEST", "Invalid session key in remove list")
                remove_keys.append(key)

        prefs = _load_preferences(user_id)
        merged = merge_session_titles(prefs, set_map, remove_keys)
        _save_preferences(user_id, merged)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))
    except ErrorEnvelope as exc:
        return envelope_response(exc)

    return JSONResponse(status_code=200, content={"titles": merged[SESSION_TITLES_PREF_KEY]})
