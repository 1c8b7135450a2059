"""Fixed-interval polling with enable/disable and out-of-band refresh."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger("app.auto_refresh")


class AutoRefresher:
    """Run ``callback`` every ``interval`` seconds while enabled.

    Disabling cancels the next scheduled tick but never interrupts a callback
    that is already running. ``refresh_now`` runs one extra callback whatever
    the flag says; overlapping runs are not de-duplicated, the last one to
    finish wins.
    """

    def __init__(self, interval: float, callback: Callable[[], object], timer_factory=threading.Timer) -> None:
        self.interval = interval
        self.callback = callback
        self._timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self.enabled = False
        self.last_updated: Optional[datetime] = None
        self.runs = 0

    def _schedule(self) -> None:
        with self._lock:
            if not self.enabled:
                return
            timer = self._timer_factory(self.interval, self._tick)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _run(self) -> None:
        try:
            self.callback()
        except Exception:
            logger.exception("auto_refresh_callback_failed")
        finally:
            self.runs += 1
            self.last_updated = datetime.now(timezone.utc)

    def _tick(self) -> None:
        if not self.enabled:
            return
        self._run()
        self._schedule()

    def enable(self) -> None:
        if self.enabled:
            return
        self.enabled = True
        self._schedule()

    def disable(self) -> None:
        with self._lock:
            self.enabled = False
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def refresh_now(self) -> None:
        self._run()

    def set_enabled(self, enabled: bool) -> None:
        if enabled:
            self.enable()
        else:
            self.disable()
