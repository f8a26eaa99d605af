"""Background refresh so the first real request never pays for a cold refresh."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


REFRESH_INTERVAL = 45 * 60


class BackgroundRefresher:
    """Calls a non-interactive refresh check on a fixed period.

    Failures are logged and swallowed; the timer keeps running.
    """

    def __init__(self, check: Callable[[], object], interval: float = REFRESH_INTERVAL) -> None:
        self._check = check
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Setting up automatic token refresh interval ({self._interval / 60:.0f} minutes)")
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="token-refresher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> None:
        """Run one check immediately."""
        logger.info("Running scheduled token refresh check")
        try:
            result = self._check()
        except Exception:
            logger.exception("Error in automatic token refresh")
            return
        logger.info(f"Completed scheduled token refresh check: {getattr(result, 'value', result)}")

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self.run_once()
