from __future__ import annotations

import logging
import signal
import threading
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """
    One-shot, thread-safe "stop serving" flag.

    The first cancel() wins and records its reason; later calls are no-ops.
    There is no reset.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Return True only for the call that actually fired the token."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class SignalListener:
    """
    Bridge SIGINT/SIGTERM into a CancellationToken.

    Subscribes on construction, so it has to be built on the main thread.
    stop() puts back whatever handlers were installed before (normally
    Python's defaults: KeyboardInterrupt for SIGINT, terminate for SIGTERM),
    which is what makes a second Ctrl+C during shutdown effective.
    """

    def __init__(self, token: CancellationToken, signals: Iterable[int] = HANDLED_SIGNALS) -> None:
        self.token = token
        self._lock = threading.Lock()
        self._previous: Dict[int, Any] = {}
        for sig in signals:
            self._previous[sig] = signal.signal(sig, self._handle)
        self._active = True
        logger.debug("Subscribed to %s", ", ".join(signal.Signals(s).name for s in self._previous))

    @property
    def active(self) -> bool:
        return self._active

    def _handle(self, signum: int, frame: Any) -> None:
        name = signal.Signals(signum).name
        if self.token.cancel(f"signal:{name}"):
            logger.info("Received %s, cancelling", name)
        else:
            logger.debug("Received %s again, already cancelled", name)

    def stop(self) -> None:
        """Unsubscribe and restore previous handlers. Safe to call repeatedly."""
        with self._lock:
            if not self._active:
                return
            self._active = False
            previous, self._previous = self._previous, {}
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
