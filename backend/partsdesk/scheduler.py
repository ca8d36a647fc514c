# Overview: Background thread that runs the reservation expiration sweep on a fixed interval.

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class ExpirationScheduler:
    """
    Daemon ticker owned by the app process.

    Each tick runs `sweep` inside an application context. A failing tick is
    logged and the loop keeps going; stop() wakes the thread immediately.
    """

    def __init__(self, app, interval_seconds: float, sweep: Callable | None = None):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if sweep is None:
            from .services.expiration_service import sweep_reservations as sweep
        self.app = app
        self.interval_seconds = interval_seconds
        self._sweep = sweep
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="reservation-expiration-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("Reservation sweeper started (every %ss)", self.interval_seconds)

    def stop(self, timeout: float | None = 5) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Reservation sweeper stopped")

    def run_once(self):
        """Run one sweep now; returns the sweep result, or None if it failed."""
        self.ticks += 1
        try:
            with self.app.app_context():
                return self._sweep()
        except Exception:
            logger.exception("Reservation sweep tick failed")
            return None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
