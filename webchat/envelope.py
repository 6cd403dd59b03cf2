from __future__ import annotations

import uuid
from typing import Any, Dict, Tuple

from fastapi.responses import JSONResponse

SERVICE_NAME = "webchat"


class ErrorEnvelope(Exception):
    """
    Custom exception used internally to simplify control flow.

    Routers convert this into the standardized error envelope with `error_response`.
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_envelope(
    *,
    request_id: str,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Tuple[int, Dict[str, Any]]:
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "meta": {
            "request_id": request_id,
            "service": SERVICE_NAME,
        },
    }
    return status_code, body


def error_response(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    status_code, body = build_error_envelope(
        request_id=new_request_id(),
        status_code=status_code,
        code=code,
        message=message,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body)


def envelope_response(exc: ErrorEnvelope) -> JSONResponse:
    return error_response(exc.status_code, exc.code, exc.message, exc.details)
