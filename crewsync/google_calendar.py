from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any
from urllib.parse import quote

import requests
from google.auth.transport.requests import AuthorizedSession

from crewsync.errors import RemoteCallError
from crewsync.models import CanonicalEvent, GoogleConfig, RemoteEvent, SyncConfig, SyncWindow

logger = logging.getLogger(__name__)


class RemoteCalendar(ABC):
    @abstractmethod
    def list_events(
        self,
        calendar_id: str,
        window: SyncWindow,
        include_deleted: bool = True,
        page_token: str | None = None,
    ) -> tuple[list[RemoteEvent], str | None]:
        raise NotImplementedError

    @abstractmethod
    def insert_event(self, calendar_id: str, event: CanonicalEvent, external_id: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def update_event(self, calendar_id: str, remote_id: str, event: CanonicalEvent) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_event(self, calendar_id: str, remote_id: str) -> None:
        raise NotImplementedError


def _rfc3339(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def build_event_body(event: CanonicalEvent, sync_config: SyncConfig) -> dict[str, Any]:
    # dateTime carries the civil time with its explicit offset; timeZone names the zone for display.
    body: dict[str, Any] = {
        "summary": event.title,
        "start": {"dateTime": _rfc3339(event.start), "timeZone": sync_config.timezone},
        "end": {"dateTime": _rfc3339(event.end), "timeZone": sync_config.timezone},
        "description": sync_config.description_marker,
        "status": "confirmed",
    }
    if event.is_flight_duty and sync_config.reminder_minutes:
        body["reminders"] = {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": minutes} for minutes in sync_config.reminder_minutes],
        }
    else:
        body["reminders"] = {"useDefault": True}
    return body


def parse_remote_event(item: dict[str, Any]) -> RemoteEvent | None:
    remote_id = str(item.get("id", "") or "").strip()
    if not remote_id:
        return None
    raw_uid = item.get("iCalUID")
    external_id = str(raw_uid).strip().lower() if raw_uid else None
    return RemoteEvent(
        remote_id=remote_id,
        external_id=external_id or None,
        title=str(item.get("summary", "") or ""),
        description=item.get("description"),
        status=str(item.get("status", "confirmed") or "confirmed"),
    )


def _json(response: requests.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise RemoteCallError(f"Invalid JSON from Google Calendar: {exc}", status_code=response.status_code) from exc
    return payload if isinstance(payload, dict) else {}


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:300]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text[:300]


class GoogleCalendarService(RemoteCalendar):
    def __init__(
        self,
        credentials: Any,
        *,
        google_config: GoogleConfig,
        sync_config: SyncConfig,
        session: requests.Session | None = None,
    ) -> None:
        self.google_config = google_config
        self.sync_config = sync_config
        self._session = session if session is not None else AuthorizedSession(credentials)

    def _events_url(self, calendar_id: str, remote_id: str = "") -> str:
        base = f"{self.google_config.api_base_url}/calendars/{quote(calendar_id, safe='')}/events"
        if remote_id:
            return f"{base}/{quote(remote_id, safe='')}"
        return base

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self._session.request(method, url, timeout=self.google_config.timeout_seconds, **kwargs)
        except requests.RequestException as exc:
            raise RemoteCallError(f"{type(exc).__name__}: {exc}") from exc
        if not response.ok:
            raise RemoteCallError(
                f"HTTP {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    def list_events(
        self,
        calendar_id: str,
        window: SyncWindow,
        include_deleted: bool = True,
        page_token: str | None = None,
    ) -> tuple[list[RemoteEvent], str | None]:
        params: dict[str, Any] = {
            "timeMin": _rfc3339(window.start),
            "timeMax": _rfc3339(window.end),
            "showDeleted": "true" if include_deleted else "false",
            "singleEvents": "true",
            "maxResults": self.sync_config.page_size,
        }
        if page_token:
            params["pageToken"] = page_token
        payload = _json(self._request("GET", self._events_url(calendar_id), params=params))
        events: list[RemoteEvent] = []
        for item in payload.get("items", []) or []:
            parsed = parse_remote_event(item)
            if parsed is not None:
                events.append(parsed)
        return events, payload.get("nextPageToken") or None

    def insert_event(self, calendar_id: str, event: CanonicalEvent, external_id: str) -> str:
        body = build_event_body(event, self.sync_config)
        body["iCalUID"] = external_id
        payload = _json(self._request("POST", self._events_url(calendar_id), json=body))
        return str(payload.get("id", ""))

    def update_event(self, calendar_id: str, remote_id: str, event: CanonicalEvent) -> None:
        body = build_event_body(event, self.sync_config)
        self._request("PUT", self._events_url(calendar_id, remote_id), json=body)

    def delete_event(self, calendar_id: str, remote_id: str) -> None:
        try:
            self._request("DELETE", self._events_url(calendar_id, remote_id))
        except RemoteCallError as exc:
            if exc.gone:
                logger.debug("Event %s already deleted on %s", remote_id, calendar_id)
                return
            raise
