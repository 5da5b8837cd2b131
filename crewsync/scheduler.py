from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Optional

from crewsync.job_store import JobStore

logger = logging.getLogger(__name__)


class JobSweeper:
    def __init__(self, job_store: JobStore, max_age: timedelta, interval_seconds: int) -> None:
        self.job_store = job_store
        self.max_age = max_age
        self.interval_seconds = max(1, int(interval_seconds))
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="crewsync-job-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def sweep_once(self) -> int:
        removed = self.job_store.expire(self.max_age)
        if removed:
            logger.info("Expired %d sync job(s) older than %s", removed, self.max_age)
        return removed

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self.interval_seconds):
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Job sweep failed")
