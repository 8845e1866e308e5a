from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketClose

from ..config import Settings

NOT_FOUND_BODY: Dict[str, Any] = {
    "status": 404,
    "data": None,
    "error_message": "No Route Found",
}


def build_router(settings: Settings) -> APIRouter:
    """
    Health routes bound to the given settings.

    port and service_name come from the Settings captured here, so the
    handler never looks at the process environment.
    """
    router = APIRouter(tags=["meta"])
    port = str(settings.port)
    service_name = settings.app_name

    @router.get("/ping")
    def ping() -> Dict[str, Any]:
        return {
            "status": 200,
            "port": port,
            "service_name": service_name,
        }

    return router


async def lost_in_space(scope, receive, send) -> None:
    """
    Router default: nothing matched the path.

    Plugged in as app.router.default, so an HTTPException(404) raised by a
    matched handler keeps its own detail.
    """
    if scope["type"] == "websocket":
        await WebSocketClose()(scope, receive, send)
        return
    response = JSONResponse(status_code=404, content=NOT_FOUND_BODY)
    await response(scope, receive, send)
