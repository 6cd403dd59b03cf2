"""
Signals API: POST /signals (batch insert), GET /signals (paged list).
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from webchat.dependencies import AuthError, read_json_body, require_user_id
from webchat.envelope import error_response
from webchat.models import SignalInput
from webchat.storage import signal_store

logger = logging.getLogger("webchat")

router = APIRouter(prefix="/signals", tags=["signals"])

MAX_BATCH_SIZE = 50
DEFAULT_LIMIT = 50
MAX_LIMIT = 100


def _parse_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


@router.post("")
async def post_signals(request: Request) -> JSONResponse:
    """
    Insert up to 50 signals. Each row is inserted on its own, so one bad row
    only bumps `failed`. Returns 200 with { inserted, failed }.
    """
    try:
        user_id = require_user_id(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    try:
        body = await read_json_body(request)
    except ValueError:
        return error_response(400, "MALFORMED_REQUEST", "Invalid JSON")

    signals = body.get("signals") if isinstance(body, dict) else None
    if not isinstance(signals, list) or not signals:
        return error_response(400, "MALFORMED_REQUEST", "signals array required")

    inserted = 0
    failed = 0
    for raw in signals[:MAX_BATCH_SIZE]:
        try:
            signal = SignalInput.model_validate(raw)
            signal_store.insert_signal(user_id, signal.model_dump())
        except ValidationError as exc:
            failed += 1
            logger.warning("skipping invalid signal user_id=%s: %s", user_id, exc.errors()[0]["msg"])
        except Exception as exc:
            failed += 1
            logger.warning("insert_signal failed user_id=%s: %s", user_id, exc)
        else:
            inserted += 1

    return JSONResponse(status_code=200, content={"inserted": inserted, "failed": failed})


@router.get("")
async def get_signals(
    request: Request,
    type: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
) -> JSONResponse:
    """
    List the caller's signals, newest first. limit is clamped to [1, 100].
    """
    try:
        user_id = require_user_id(request)
    except AuthError as exc:
        return error_response(401, "UNAUTHORIZED", str(exc))

    limit_value = min(max(_parse_int(limit, DEFAULT_LIMIT), 1), MAX_LIMIT)
    offset_value = max(_parse_int(offset, 0), 0)

    try:
        rows = signal_store.list_signals(user_id, signal_type=type, limit=limit_value, offset=offset_value)
    except Exception as exc:
        logger.exception("list_signals failed")
        return error_response(500, "STORAGE_ERROR", str(exc))

    return JSONResponse(status_code=200, content={"signals": rows, "count": len(rows)})
