from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ..config import Settings
from .signals import CancellationToken, SignalListener

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SERVE_FAILED = 1
EXIT_FORCED = 2

# time cancelled requests get to send their 503 before the server is forced
FORCE_GRACE_S = 1.0
# extra time given to the serving thread to unwind after the deadline
JOIN_GRACE_S = 2.0
# blocking waits on the main thread are sliced so signal handlers get to run
POLL_S = 0.1

FORCED_SHUTDOWN_BODY: Dict[str, Any] = {
    "status": 503,
    "error_message": "Server forced to shutdown",
}


class LifecycleState(str, Enum):
    CONFIGURING = "configuring"
    SERVING = "serving"
    CANCELLING = "cancelling"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownOutcome(str, Enum):
    CLEAN = "clean"
    FORCED = "forced"


class InFlightTracker:
    """
    Requests currently inside the app, waitable from another thread.

    Requests entering with their asyncio task can be cancelled from the
    controller thread once shutdown is forced.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._count = 0
        self._tasks: Dict[asyncio.Task, asyncio.AbstractEventLoop] = {}
        self._forcing = False

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    @property
    def forcing(self) -> bool:
        return self._forcing

    def enter(self, task: Optional[asyncio.Task] = None) -> None:
        with self._cond:
            self._count += 1
            if task is not None:
                self._tasks[task] = task.get_loop()

    def leave(self, task: Optional[asyncio.Task] = None) -> None:
        with self._cond:
            self._count = max(0, self._count - 1)
            if task is not None:
                self._tasks.pop(task, None)
            if self._count == 0:
                self._cond.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """True if the count reached zero within timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._count:
                if deadline is None:
                    self._cond.wait(POLL_S)
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(min(remaining, POLL_S))
            return True

    def cancel_all(self) -> int:
        """Mark shutdown as forced and cancel every tracked request task."""
        with self._cond:
            self._forcing = True
            pending = list(self._tasks.items())
        for task, loop in pending:
            if not loop.is_closed():
                loop.call_soon_threadsafe(task.cancel)
        return len(pending)


class InFlightMiddleware:
    """
    Plain ASGI middleware feeding an InFlightTracker.

    Sits outermost so the whole request, middlewares included, counts as in flight.
    A request cancelled by a forced shutdown answers 503 with the JSON error
    body if it had not started its response yet; otherwise the connection
    is dropped mid-response.
    """

    def __init__(self, app: Any, tracker: InFlightTracker) -> None:
        self.app = app
        self.tracker = tracker

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = False

        async def send_tracking(message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        task = asyncio.current_task()
        self.tracker.enter(task)
        try:
            await self.app(scope, receive, send_tracking)
        except asyncio.CancelledError:
            if not self.tracker.forcing:
                raise
            if task is not None and hasattr(task, "uncancel"):
                task.uncancel()
            if not started:
                await JSONResponse(status_code=503, content=FORCED_SHUTDOWN_BODY)(scope, receive, send)
        finally:
            self.tracker.leave(task)


def build_server(app: FastAPI, settings: Settings) -> uvicorn.Server:
    # uvicorn's own timeout is a backstop behind the controller's deadline
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=settings.shutdown_timeout + FORCE_GRACE_S,
    )
    return uvicorn.Server(config)


ServerFactory = Callable[[FastAPI, Settings], Any]
AppFactory = Callable[[Settings, InFlightTracker], FastAPI]


class LifecycleController:
    """
    Owns one process run: configure -> serve -> cancel -> shut down -> stop.

    - The serving loop runs on its own thread; the calling (main) thread only
      waits on the cancellation token.
    - Shutdown happens at most once and is bounded by settings.shutdown_timeout.
    - Once cancelled, the listener is stopped and SIGINT raises
      KeyboardInterrupt again; from then on a second Ctrl+C forces the
      shutdown instead of escaping run().
    - A serving loop that dies (bind error, uvicorn exiting on its own)
      cancels the token instead of leaving the main thread waiting forever.

    server_factory must return an object with run(), started, should_exit
    and force_exit, i.e. the uvicorn.Server surface we use.
    """

    def __init__(
        self,
        settings: Settings,
        app_factory: AppFactory,
        *,
        token: Optional[CancellationToken] = None,
        listener: Optional[SignalListener] = None,
        server_factory: ServerFactory = build_server,
    ) -> None:
        self.settings = settings
        self.token = token or CancellationToken()
        self.listener = listener
        self.tracker = InFlightTracker()
        self._app_factory = app_factory
        self._server_factory = server_factory

        self.app: Optional[FastAPI] = None
        self.server: Any = None
        self.serve_error: Optional[BaseException] = None
        self.outcome: Optional[ShutdownOutcome] = None
        self.interrupted = False

        self._state = LifecycleState.CONFIGURING
        self._state_lock = threading.Lock()
        self._shutdown_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    def _transition(self, state: LifecycleState) -> None:
        with self._state_lock:
            if self._state is LifecycleState.STOPPED:
                return
            logger.debug("lifecycle %s -> %s", self._state.value, state.value)
            self._state = state

    def _second_interrupt(self) -> None:
        if not self.interrupted:
            self.interrupted = True
            logger.warning("Second interrupt received, forcing shutdown")

    # -------------------------
    # Configuring
    # -------------------------

    def configure(self) -> FastAPI:
        """Build the app and the server. Anything raised here is fatal."""
        if self.app is None:
            self.app = self._app_factory(self.settings, self.tracker)
            self.server = self._server_factory(self.app, self.settings)
        return self.app

    # -------------------------
    # Serving
    # -------------------------

    def _serve_forever(self) -> None:
        try:
            self.server.run()
        except (Exception, SystemExit) as exc:
            # uvicorn reports bind failures with sys.exit(1)
            self.serve_error = exc
            logger.error("listen: serving loop on port %s failed: %r", self.settings.port, exc)
            self.token.cancel("serve-failed")
            return

        if not getattr(self.server, "started", True):
            # e.g. uvicorn returning after a failed lifespan startup
            self.serve_error = RuntimeError("serving loop exited before it started")
            logger.error("listen: serving loop on port %s exited before it started", self.settings.port)
            self.token.cancel("serve-failed")
            return
        self.token.cancel("server-stopped")

    def start(self) -> None:
        if self.app is None:
            self.configure()
        self._transition(LifecycleState.SERVING)
        self._thread = threading.Thread(target=self._serve_forever, name="guin-server", daemon=True)
        self._thread.start()
        logger.info("Listening on %s:%s", self.settings.host, self.settings.port)

    def wait(self) -> None:
        """Block until the cancellation token fires, then stop listening for signals."""
        try:
            # Short waits keep the main thread responsive to signal handlers.
            while not self.token.wait(POLL_S * 5):
                pass
        except KeyboardInterrupt:
            # only reachable without a listener: plain Ctrl+C is the first cancellation
            self.token.cancel("interrupt")

        try:
            self._transition(LifecycleState.CANCELLING)
            if self.listener is not None:
                self.listener.stop()
            logger.warning("shutting down gracefully (%s), press Ctrl+C again to force", self.token.reason)
        except KeyboardInterrupt:
            self._second_interrupt()

    # -------------------------
    # Shutting down
    # -------------------------

    def _drain(self, deadline: float) -> bool:
        self._transition(LifecycleState.SHUTTING_DOWN)
        if self.server is not None:
            self.server.should_exit = True
        if self.interrupted:
            return False
        return self.tracker.wait_idle(timeout=deadline)

    def _force(self, deadline: float) -> None:
        remaining = self.tracker.count
        try:
            self.tracker.cancel_all()
            self.tracker.wait_idle(timeout=FORCE_GRACE_S)
        except KeyboardInterrupt:
            self._second_interrupt()
        finally:
            if self.server is not None:
                self.server.force_exit = True
        logger.warning(
            "Server forced to shutdown: %d request(s) still in flight after %.1fs",
            remaining,
            deadline,
        )

    def _join_serving_thread(self, timeout: float) -> None:
        if self._thread is None:
            return
        limit = time.monotonic() + timeout
        try:
            while self._thread.is_alive() and time.monotonic() < limit:
                self._thread.join(POLL_S)
        except KeyboardInterrupt:
            self._second_interrupt()
            if self.server is not None:
                self.server.force_exit = True
        if self._thread.is_alive():
            logger.error("Serving thread did not stop; abandoning it")

    def shutdown(self) -> ShutdownOutcome:
        """Stop the server within the deadline. Runs once; later calls return the first outcome."""
        with self._shutdown_lock:
            if self.outcome is not None:
                return self.outcome

            deadline = self.settings.shutdown_timeout
            try:
                drained = self._drain(deadline)
            except KeyboardInterrupt:
                self._second_interrupt()
                drained = False

            if drained:
                self.outcome = ShutdownOutcome.CLEAN
            else:
                self.outcome = ShutdownOutcome.FORCED
                self._force(deadline)

            self._join_serving_thread(deadline + JOIN_GRACE_S)

            if self.outcome is ShutdownOutcome.CLEAN:
                logger.info("Server shutdown")

            self._transition(LifecycleState.STOPPED)
            return self.outcome

    def exit_code(self) -> int:
        if self.serve_error is not None:
            return EXIT_SERVE_FAILED
        if self.outcome is ShutdownOutcome.FORCED:
            return EXIT_FORCED
        return EXIT_OK

    def run(self) -> int:
        """configure -> serve -> wait -> shutdown; returns the process exit code."""
        try:
            self.configure()
            self.start()
        except BaseException:
            if self.listener is not None:
                self.listener.stop()
            raise

        try:
            self.wait()
        finally:
            if self.listener is not None:
                self.listener.stop()

        while True:
            try:
                self.shutdown()
                break
            except KeyboardInterrupt:
                # landed outside shutdown's own guards; go again, now forced
                self._second_interrupt()
        return self.exit_code()
