from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable

from crewsync.ics import parse_calendar
from crewsync.models import DutyRecord, RosterPeriod
from crewsync.normalizer import parse_roster_timestamp

logger = logging.getLogger(__name__)


def _start_of(duty: DutyRecord) -> datetime | None:
    if isinstance(duty.start, datetime):
        return duty.start
    text = str(duty.start or "").strip()
    parsed = parse_roster_timestamp(text)
    if parsed is not None:
        return parsed
    try:
        return datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    except ValueError:
        return None


def filter_period(duties: Iterable[DutyRecord], period: RosterPeriod | None) -> list[DutyRecord]:
    if period is None:
        return list(duties)
    selected: list[DutyRecord] = []
    for duty in duties:
        start = _start_of(duty)
        # Unparseable starts are passed through so the normalizer reports them.
        if start is None or period.contains(start):
            selected.append(duty)
    return selected


class DutyFeed(ABC):
    @abstractmethod
    def fetch_duties(self, period: RosterPeriod | None) -> list[DutyRecord]:
        raise NotImplementedError


class StaticDutyFeed(DutyFeed):
    def __init__(self, records: Iterable[DutyRecord]) -> None:
        self.records = list(records)

    @classmethod
    def from_dicts(cls, items: Iterable[dict[str, Any]]) -> "StaticDutyFeed":
        records = [
            DutyRecord(
                name=str(item.get("name", "") or ""),
                start=item.get("start") or "",
                end=item.get("end") or "",
            )
            for item in items
            if isinstance(item, dict)
        ]
        return cls(records)

    def fetch_duties(self, period: RosterPeriod | None) -> list[DutyRecord]:
        return filter_period(self.records, period)


class IcsDutyFeed(DutyFeed):
    def __init__(self, raw_ics: str | bytes) -> None:
        self.raw_ics = raw_ics

    def fetch_duties(self, period: RosterPeriod | None) -> list[DutyRecord]:
        duties = parse_calendar(self.raw_ics)
        logger.info("Parsed %d duties from ICS", len(duties))
        return filter_period(duties, period)
