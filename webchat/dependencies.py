from __future__ import annotations

import hmac
import json
from typing import Any, Dict, Optional

import jwt
from fastapi import Request
from fastapi.requests import HTTPConnection

from .config import get_settings
from .push import PushSender, WebPushSender
from .rate_limit import RateLimiter, build_rate_limiter


class AuthError(RuntimeError):
    """Raised when authentication fails."""


def _get_bearer_token(request: HTTPConnection) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None


def _get_session_cookie(request: HTTPConnection) -> Optional[str]:
    cookie_token = request.cookies.get("sb-access-token")
    return cookie_token or None


def _get_query_token(request: HTTPConnection) -> Optional[str]:
    # Browsers cannot set headers on websocket upgrades.
    query_token = request.query_params.get("access_token")
    return query_token or None


def _verify_supabase_token(token: str) -> Dict[str, Any]:
    settings = get_settings()
    secret = settings.supabase_jwt_secret
    audience = settings.supabase_jwt_audience
    if not secret:
        raise AuthError("Supabase auth is not configured")

    decode_kwargs: Dict[str, Any] = {
        "algorithms": ["HS256"],
        "options": {"verify_aud": bool(audience)},
    }
    if audience:
        decode_kwargs["audience"] = audience

    try:
        return jwt.decode(token, secret, **decode_kwargs)
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid or expired session token") from exc


def require_user_id(request: HTTPConnection) -> str:
    """
    Require a Supabase session and return the user id (sub).
    """
    token = _get_bearer_token(request) or _get_session_cookie(request) or _get_query_token(request)
    if not token:
        raise AuthError("Missing session token")

    claims = _verify_supabase_token(token)
    user_id = claims.get("sub")
    if not user_id:
        raise AuthError("Missing user id in token")
    return str(user_id)


def require_service_token(request: Request, expected: Optional[str]) -> None:
    """
    Guard for machine-to-machine endpoints: the bearer must equal `expected`.
    An unset token rejects every caller.
    """
    supplied = _get_bearer_token(request)
    if not expected or not supplied or not hmac.compare_digest(supplied, expected):
        raise AuthError("Unauthorized")


def _reject_constant(token: str) -> Any:
    raise ValueError(f"Non-finite number in JSON: {token}")


async def read_json_body(request: Request) -> Any:
    """
    Decode the request body as strict JSON.

    NaN and Infinity are rejected; they cannot be stored or rendered back.
    Raises ValueError for any undecodable body.
    """
    raw = await request.body()
    return json.loads(raw, parse_constant=_reject_constant)


def get_request_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        return first or None
    real_ip = request.headers.get("x-real-ip")
    return real_ip.strip() if real_ip and real_ip.strip() else None


def get_rate_limiter(request: Request) -> RateLimiter:
    """
    Dependency returning the limiter held on app.state.

    Tests override this via FastAPI's dependency_overrides.
    """
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = build_rate_limiter(get_settings().rate_limit_backend)
        request.app.state.rate_limiter = limiter
    return limiter


def get_push_sender() -> Optional[PushSender]:
    """
    Dependency returning the push transport, or None when VAPID keys are missing.

    Tests override this with a recording sender.
    """
    settings = get_settings()
    if not settings.web_push_public_key or not settings.web_push_private_key:
        return None
    return WebPushSender(private_key=settings.web_push_private_key, subject=settings.web_push_subject)
