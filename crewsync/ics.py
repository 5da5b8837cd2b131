from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from icalendar import Alarm as ICAlarm
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from crewsync.models import CanonicalEvent, DutyRecord, SyncConfig

logger = logging.getLogger(__name__)

PRODID = "-//CrewSync//Roster//EN"


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def _build_vevent(event: CanonicalEvent, sync_config: SyncConfig) -> ICEvent:
    vevent = ICEvent()
    vevent.add("UID", event.id)
    vevent.add("DTSTART", event.start)
    vevent.add("DTEND", event.end)
    vevent.add("SUMMARY", event.title)
    vevent.add("DESCRIPTION", sync_config.description_marker)
    if event.is_flight_duty:
        for minutes in sync_config.reminder_minutes:
            alarm = ICAlarm()
            alarm.add("ACTION", "DISPLAY")
            alarm.add("TRIGGER", timedelta(minutes=-minutes))
            alarm.add("DESCRIPTION", "Reminder")
            vevent.add_component(alarm)
    return vevent


def render_calendar(events: Iterable[CanonicalEvent], *, sync_config: SyncConfig) -> bytes:
    calendar_obj = ICalendar()
    calendar_obj.add("PRODID", PRODID)
    calendar_obj.add("VERSION", "2.0")
    calendar_obj.add("CALSCALE", "GREGORIAN")
    calendar_obj.add("METHOD", "PUBLISH")
    for event in events:
        calendar_obj.add_component(_build_vevent(event, sync_config))
    return calendar_obj.to_ical()


def parse_calendar(raw_data: Any) -> list[DutyRecord]:
    """Read duty records from an iCalendar document.

    Floating DTSTART/DTEND values are returned naive so the normalizer can
    place them in the configured civil zone; all-day entries are ignored.
    """
    calendar_obj = ICalendar.from_ical(_decode_raw_ical(raw_data))
    duties: list[DutyRecord] = []
    for vevent in calendar_obj.walk("VEVENT"):
        summary = str(vevent.get("SUMMARY", "") or "").strip()
        if vevent.get("DTSTART") is None or vevent.get("DTEND") is None:
            logger.warning("Skipping VEVENT %r without DTSTART/DTEND", summary)
            continue
        start = vevent.decoded("DTSTART")
        end = vevent.decoded("DTEND")
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            logger.debug("Skipping all-day VEVENT %r", summary)
            continue
        duties.append(DutyRecord(name=summary, start=start, end=end))
    return duties
