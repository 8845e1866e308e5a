from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException

from ..api.meta import NOT_FOUND_BODY
from ..config import Settings

FRONTEND_DIR = Path(__file__).resolve().parent
PAGE_DIR = FRONTEND_DIR / "page"
ASSET_DIR = FRONTEND_DIR / "asset"


class AssetFiles(StaticFiles):
    """StaticFiles whose missing files answer like any other unmatched route."""

    async def get_response(self, path: str, scope):
        try:
            return await super().get_response(path, scope)
        except HTTPException as exc:
            if exc.status_code != 404:
                raise
            return JSONResponse(status_code=404, content=NOT_FOUND_BODY)


def install_pages(app: FastAPI, settings: Settings) -> Jinja2Templates:
    """
    Static assets under /static and the HTML pages rendered from page/*.html.
    Returns the template loader so callers can render extra pages.
    """
    app.mount("/static", AssetFiles(directory=ASSET_DIR), name="static")
    templates = Jinja2Templates(directory=str(PAGE_DIR))

    router = APIRouter(tags=["pages"], include_in_schema=False)

    @router.get("/", response_class=HTMLResponse)
    def index(request: Request):
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "service_name": settings.app_name or "guin",
                "version": settings.app_version,
            },
        )

    app.include_router(router)
    return templates
