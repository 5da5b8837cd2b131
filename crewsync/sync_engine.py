from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from typing import Callable

from crewsync.config_manager import ConfigManager
from crewsync.credentials import build_credentials, rotated_refresh_token
from crewsync.duty_feed import DutyFeed
from crewsync.errors import CredentialFailure
from crewsync.google_calendar import GoogleCalendarService
from crewsync.job_store import JobStore
from crewsync.models import JOB_DONE, JOB_ERROR, RosterPeriod, SyncResult
from crewsync.normalizer import normalize_all
from crewsync.reconciler import reconcile

logger = logging.getLogger(__name__)


def _fanout(sink: Callable[[str], None] | None) -> Callable[[str], None]:
    def emit(message: str) -> None:
        logger.info(message)
        if sink is not None:
            sink(message)

    return emit


class SyncEngine:
    def __init__(self, config_manager: ConfigManager, job_store: JobStore) -> None:
        self.config_manager = config_manager
        self.job_store = job_store

    def run_sync(
        self,
        period: RosterPeriod | None,
        refresh_token: str,
        calendar_id: str,
        *,
        feed: DutyFeed,
        sink: Callable[[str], None] | None = None,
    ) -> SyncResult:
        log = _fanout(sink)
        config = self.config_manager.load()
        target_calendar = str(calendar_id or "").strip() or config.sync.default_calendar_id

        log(f"Fetching duties for {period or 'all periods'}")
        duties = feed.fetch_duties(period)
        events = normalize_all(duties, sync_config=config.sync, log=log)
        log(f"Normalized {len(events)} of {len(duties)} duties")

        log("Authorizing with Google Calendar")
        credentials = build_credentials(config.google, refresh_token)
        new_refresh_token = rotated_refresh_token(credentials, refresh_token)
        if new_refresh_token:
            log("Google issued a new refresh token")
        service = GoogleCalendarService(
            credentials,
            google_config=config.google,
            sync_config=config.sync,
        )

        log(f"Uploading to calendar {target_calendar}")
        result = reconcile(events, service, target_calendar, sync_config=config.sync, log=log)
        result.new_refresh_token = new_refresh_token
        return result

    def start_job(self) -> str:
        job = self.job_store.create()
        logger.info("Created sync job %s", job.job_id)
        return job.job_id

    def run_job(
        self,
        job_id: str,
        period: RosterPeriod | None,
        refresh_token: str,
        calendar_id: str,
        *,
        feed: DutyFeed,
    ) -> None:
        def sink(line: str) -> None:
            self.job_store.append_log(job_id, line)

        try:
            result = self.run_sync(period, refresh_token, calendar_id, feed=feed, sink=sink)
        except CredentialFailure as exc:
            self._fail(job_id, f"Credential failure: {exc}")
        except Exception as exc:
            logger.debug("Sync job %s failed:\n%s", job_id, traceback.format_exc())
            self._fail(job_id, str(exc) or type(exc).__name__)
        else:
            self.job_store.update(
                job_id,
                status=JOB_DONE,
                result=result,
                new_refresh_token=result.new_refresh_token,
                finished_at=datetime.now(timezone.utc),
            )

    def _fail(self, job_id: str, message: str) -> None:
        logger.warning("Sync job %s failed: %s", job_id, message)
        self.job_store.append_log(job_id, f"Error: {message}")
        self.job_store.update(
            job_id,
            status=JOB_ERROR,
            error=message,
            finished_at=datetime.now(timezone.utc),
        )
