from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crewsync.errors import NormalizationError
from crewsync.models import CanonicalEvent, DutyRecord, SyncConfig

logger = logging.getLogger(__name__)

# Crew portal format, e.g. "2025.Mar.01 0900L" (L = local civil time).
ROSTER_TIMESTAMP_PATTERN = re.compile(
    r"^(?P<year>\d{4})\.(?P<month>[A-Za-z]{3})\.(?P<day>\d{1,2})\s+(?P<hour>\d{2})(?P<minute>\d{2})L?$"
)
MONTH_ABBR = {
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
}
SLUG_STRIP_PATTERN = re.compile(r"[^a-z0-9/]")
ID_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"


def civil_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def parse_roster_timestamp(value: str) -> datetime | None:
    match = ROSTER_TIMESTAMP_PATTERN.match(value.strip())
    if not match:
        return None
    month = MONTH_ABBR.get(match.group("month").upper())
    if month is None:
        return None
    try:
        return datetime(
            int(match.group("year")),
            month,
            int(match.group("day")),
            int(match.group("hour")),
            int(match.group("minute")),
        )
    except ValueError:
        # Matches the shape but names an impossible day or time, e.g. Feb 30 or 2400.
        return None


def to_civil_time(value: datetime | str, zone: ZoneInfo) -> datetime:
    """Resolve a duty timestamp to an aware datetime in ``zone``.

    Naive values (including every roster-format string) are civil time in
    ``zone``; aware values are converted into it.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise NormalizationError("timestamp is empty")
        parsed = parse_roster_timestamp(text)
        if parsed is None:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError as exc:
                raise NormalizationError(f"unparseable timestamp: {text!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=zone)
    return parsed.astimezone(zone)


def slugify_title(title: str) -> str:
    return SLUG_STRIP_PATTERN.sub("", title.lower())


def event_id(title: str, start: datetime, namespace: str) -> str:
    return f"{slugify_title(title)}-{start.strftime(ID_TIMESTAMP_FORMAT)}@{namespace}"


def is_flight_duty(title: str, pattern: str) -> bool:
    return re.match(pattern, title) is not None


def normalize(duty: DutyRecord, *, sync_config: SyncConfig) -> CanonicalEvent:
    title = " ".join(str(duty.name or "").split())
    if not title:
        raise NormalizationError("duty name is empty")
    zone = civil_zone(sync_config.timezone)
    start = to_civil_time(duty.start, zone)
    end = to_civil_time(duty.end, zone)
    if start >= end:
        raise NormalizationError(f"duty {title!r} ends before it starts")
    return CanonicalEvent(
        id=event_id(title, start, sync_config.namespace),
        title=title,
        start=start,
        end=end,
        is_flight_duty=is_flight_duty(title, sync_config.flight_pattern),
    )


def normalize_all(
    duties: Iterable[DutyRecord],
    *,
    sync_config: SyncConfig,
    log: Callable[[str], None] | None = None,
) -> list[CanonicalEvent]:
    emit = log or logger.info
    events: list[CanonicalEvent] = []
    seen: set[str] = set()
    for duty in duties:
        try:
            event = normalize(duty, sync_config=sync_config)
        except NormalizationError as exc:
            emit(f"Skipped invalid duty {duty.name!r}: {exc}")
            continue
        if event.id in seen:
            emit(f"Skipped duplicate duty {event.title} at {event.start.isoformat()}")
            continue
        seen.add(event.id)
        events.append(event)
    return events
