from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from .api import meta
from .api.v1 import router as v1_router
from .config import Settings, load_settings
from .core.faults import FaultShellMiddleware
from .core.lifecycle import InFlightMiddleware, InFlightTracker, LifecycleController, ServerFactory, build_server
from .core.log import RequestContextMiddleware, configure_logging
from .core.signals import CancellationToken, SignalListener
from .database import DatabaseMiddleware, connect, migrate, record_start
from .frontend.pages import install_pages

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = ["OPTIONS", "PUT", "POST", "GET", "DELETE"]
CORS_ALLOW_HEADERS = [
    "Origin",
    "Content-Length",
    "Content-Type",
    "Authorization",
    "x-source",
    "X-Frame-Options",
]


def install_routes(app: FastAPI) -> None:
    app.include_router(v1_router)


def create_app(
    settings: Settings,
    tracker: Optional[InFlightTracker] = None,
    engine: Optional[Engine] = None,
) -> FastAPI:
    """
    Build the application. Runs the database collaborators first:
    connect + migrate + record the start; any failure there propagates.
    """
    if engine is None:
        engine = connect(settings)
    migrate(engine)
    start = record_start(engine, settings)
    logger.info("Database ready (start #%s)", start.id)

    app = FastAPI(
        title=settings.app_name or "guin",
        version=settings.app_version,
    )
    app.state.settings = settings
    app.state.engine = engine

    # --- Middleware ---
    # add_middleware wraps, so the last one added runs first:
    # in-flight -> request context -> database -> CORS -> fault shell -> routes
    app.add_middleware(FaultShellMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )
    app.add_middleware(DatabaseMiddleware, engine=engine)
    app.add_middleware(RequestContextMiddleware)
    if tracker is not None:
        app.add_middleware(InFlightMiddleware, tracker=tracker)

    # --- Routes ---
    app.include_router(meta.build_router(settings))
    install_pages(app, settings)
    install_routes(app)
    app.router.default = meta.lost_in_space

    return app


def run(server_factory: ServerFactory = build_server) -> int:
    """
    Process entry: settings -> signals -> lifecycle. Returns the exit code.

    Settings load before anything else, so a missing PORT stops the process
    with no listener bound and no signal handlers touched.
    """
    settings = load_settings()
    configure_logging(settings.log_level)

    token = CancellationToken()
    listener = SignalListener(token)
    controller = LifecycleController(
        settings,
        lambda s, tracker: create_app(s, tracker=tracker),
        token=token,
        listener=listener,
        server_factory=server_factory,
    )
    code = controller.run()
    logger.info("Exiting with code %s (%s)", code, controller.outcome.value if controller.outcome else "n/a")
    return code
