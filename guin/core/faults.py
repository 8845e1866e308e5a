from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .log import current_request_id

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Internal Server Error"


class MalformedFault(Exception):
    """The raw fault value could not be turned into a Fault."""


@dataclass(frozen=True)
class Fault:
    kind: str
    message: str
    exc: BaseException


def normalize_fault(raw: Any) -> Fault:
    """
    Turn whatever escaped a handler into a Fault.

    message is str(exc), or the exception class name when that is empty.
    Raises MalformedFault if raw is not an exception or cannot be rendered.
    """
    if not isinstance(raw, BaseException):
        raise MalformedFault(f"not an exception: {type(raw).__name__}")

    kind = type(raw).__name__
    try:
        message = str(raw).strip()
    except Exception as exc:
        raise MalformedFault(f"cannot render {kind}") from exc

    return Fault(kind=kind, message=message or kind, exc=raw)


def fault_response(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"status": 500, "error_message": message},
    )


class FaultShellMiddleware(BaseHTTPMiddleware):
    """
    Recovery boundary around every handler.

    Uncaught exceptions become a completed 500 JSON response; the detail
    (traceback included) only goes to the log. HTTPException never gets
    here, FastAPI's exception middleware sits inside this one.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as raw:
            try:
                fault = normalize_fault(raw)
                message = fault.message
                kind = fault.kind
            except MalformedFault:
                message = FALLBACK_MESSAGE
                kind = "MalformedFault"

            logger.error(
                "Panic Error: %s %s -> %s: %s",
                request.method,
                request.url.path,
                kind,
                message,
                exc_info=raw,
                extra={"request_id": current_request_id()},
            )
            return fault_response(message)
