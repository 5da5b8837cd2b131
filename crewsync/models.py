from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any


DEFAULT_TIMEZONE = "Asia/Taipei"
DEFAULT_NAMESPACE = "crewsync"
DEFAULT_DESCRIPTION_MARKER = "Imported from CrewSync"
DEFAULT_FLIGHT_PATTERN = r"^JX\d{3}"
DEFAULT_REMINDER_MINUTES = [60, 24 * 60]
MAX_PAGE_SIZE = 2500


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def _int_list(raw: Any, fallback: list[int]) -> list[int]:
    if not isinstance(raw, (list, tuple)):
        return list(fallback)
    values: list[int] = []
    for item in raw:
        try:
            minutes = int(item)
        except (TypeError, ValueError):
            continue
        if minutes > 0 and minutes not in values:
            values.append(minutes)
    return values


@dataclass
class GoogleConfig:
    client_id: str = ""
    client_secret: str = ""
    credentials_path: str = ""
    token_uri: str = "https://oauth2.googleapis.com/token"
    api_base_url: str = "https://www.googleapis.com/calendar/v3"
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GoogleConfig":
        data = data or {}
        return cls(
            client_id=str(data.get("client_id", "")).strip(),
            client_secret=str(data.get("client_secret", "")).strip(),
            credentials_path=str(data.get("credentials_path", "")).strip(),
            token_uri=str(data.get("token_uri", "")).strip() or "https://oauth2.googleapis.com/token",
            api_base_url=str(data.get("api_base_url", "")).strip().rstrip("/")
            or "https://www.googleapis.com/calendar/v3",
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class SyncConfig:
    timezone: str = DEFAULT_TIMEZONE
    namespace: str = DEFAULT_NAMESPACE
    description_marker: str = DEFAULT_DESCRIPTION_MARKER
    flight_pattern: str = DEFAULT_FLIGHT_PATTERN
    reminder_minutes: list[int] = field(default_factory=lambda: list(DEFAULT_REMINDER_MINUTES))
    page_size: int = MAX_PAGE_SIZE
    window_padding_days: int = 1
    default_calendar_id: str = "primary"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        namespace = str(data.get("namespace", DEFAULT_NAMESPACE)).strip().lower().lstrip("@")
        return cls(
            timezone=str(data.get("timezone", DEFAULT_TIMEZONE)).strip() or DEFAULT_TIMEZONE,
            namespace=namespace or DEFAULT_NAMESPACE,
            description_marker=str(data.get("description_marker", DEFAULT_DESCRIPTION_MARKER)).strip()
            or DEFAULT_DESCRIPTION_MARKER,
            flight_pattern=str(data.get("flight_pattern", DEFAULT_FLIGHT_PATTERN)).strip()
            or DEFAULT_FLIGHT_PATTERN,
            reminder_minutes=_int_list(data.get("reminder_minutes"), DEFAULT_REMINDER_MINUTES),
            page_size=min(MAX_PAGE_SIZE, max(1, int(data.get("page_size", MAX_PAGE_SIZE)))),
            window_padding_days=max(1, int(data.get("window_padding_days", 1))),
            default_calendar_id=str(data.get("default_calendar_id", "primary")).strip() or "primary",
        )

    @property
    def id_suffix(self) -> str:
        return f"@{self.namespace}"


@dataclass
class JobsConfig:
    backend: str = "memory"
    state_path: str = "data/jobs.db"
    max_age_minutes: int = 30
    sweep_interval_seconds: int = 300

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobsConfig":
        data = data or {}
        backend = str(data.get("backend", "memory")).strip().lower()
        if backend not in {"memory", "sqlite"}:
            backend = "memory"
        return cls(
            backend=backend,
            state_path=str(data.get("state_path", "data/jobs.db")).strip() or "data/jobs.db",
            max_age_minutes=max(1, int(data.get("max_age_minutes", 30))),
            sweep_interval_seconds=max(10, int(data.get("sweep_interval_seconds", 300))),
        )


@dataclass
class AppConfig:
    google: GoogleConfig = field(default_factory=GoogleConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            google=GoogleConfig.from_dict(data.get("google")),
            sync=SyncConfig.from_dict(data.get("sync")),
            jobs=JobsConfig.from_dict(data.get("jobs")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass
class RosterPeriod:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= int(self.month) <= 12:
            raise ValueError(f"month out of range: {self.month}")
        self.year = int(self.year)
        self.month = int(self.month)

    def contains(self, value: datetime) -> bool:
        return value.year == self.year and value.month == self.month

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class DutyRecord:
    name: str
    start: datetime | str
    end: datetime | str


@dataclass(frozen=True)
class CanonicalEvent:
    id: str
    title: str
    start: datetime
    end: datetime
    is_flight_duty: bool = False


@dataclass
class RemoteEvent:
    remote_id: str
    external_id: str | None = None
    title: str = ""
    description: str | None = None
    status: str = "confirmed"

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


@dataclass(frozen=True)
class SyncWindow:
    start: datetime
    end: datetime

    @classmethod
    def covering(cls, events: list[CanonicalEvent], padding_days: int = 1) -> "SyncWindow":
        if not events:
            raise ValueError("cannot compute a sync window for an empty event set")
        padding = timedelta(days=max(1, padding_days))
        earliest = min(event.start for event in events)
        latest = max(event.end for event in events)
        return cls(start=earliest - padding, end=latest + padding)

    def contains(self, event: CanonicalEvent) -> bool:
        return self.start <= event.start and event.end <= self.end

    def union(self, other: "SyncWindow") -> "SyncWindow":
        return SyncWindow(start=min(self.start, other.start), end=max(self.end, other.end))


@dataclass
class SyncResult:
    added: int = 0
    updated: int = 0
    deleted: int = 0
    total: int = 0
    skipped: int = 0
    new_refresh_token: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "deleted": self.deleted,
            "total": self.total,
            "skipped": self.skipped,
        }


JOB_RUNNING = "running"
JOB_DONE = "done"
JOB_ERROR = "error"


@dataclass
class Job:
    job_id: str
    status: str = JOB_RUNNING
    logs: list[str] = field(default_factory=list)
    result: SyncResult | None = None
    new_refresh_token: str = ""
    error: str = ""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "logs": list(self.logs),
            "result": self.result.to_dict() if self.result is not None else None,
            "new_refresh_token": self.new_refresh_token or None,
            "error": self.error or None,
            "started_at": serialize_datetime(self.started_at),
            "finished_at": serialize_datetime(self.finished_at),
        }
