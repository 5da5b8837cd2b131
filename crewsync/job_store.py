from __future__ import annotations

import copy
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from crewsync.models import JOB_RUNNING, Job, SyncResult, parse_iso_datetime

JOB_FIELDS = {"status", "result", "new_refresh_token", "error", "finished_at"}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _new_job_id() -> str:
    return str(uuid.uuid4())


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - JOB_FIELDS
    if unknown:
        raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")


class JobStore(ABC):
    @abstractmethod
    def create(self) -> Job:
        raise NotImplementedError

    @abstractmethod
    def update(self, job_id: str, **fields: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def append_log(self, job_id: str, line: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: str) -> Job | None:
        raise NotImplementedError

    @abstractmethod
    def expire(self, max_age: timedelta, now: datetime | None = None) -> int:
        """Drop finished jobs older than ``max_age``; running jobs are kept until they finish."""
        raise NotImplementedError


class MemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: dict[str, Job] = {}

    def create(self) -> Job:
        job = Job(job_id=_new_job_id())
        with self._lock:
            self._jobs[job.job_id] = job
            return copy.deepcopy(job)

    def update(self, job_id: str, **fields: Any) -> None:
        _check_fields(fields)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            for key, value in fields.items():
                setattr(job, key, value)

    def append_log(self, job_id: str, line: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            job.logs.append(str(line))

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def expire(self, max_age: timedelta, now: datetime | None = None) -> int:
        cutoff = (now or _utc_now()) - max_age
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status != JOB_RUNNING and job.started_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        return len(expired)


class SQLiteJobStore(JobStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS sync_jobs (
            job_id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            added INTEGER,
            updated INTEGER,
            deleted INTEGER,
            total INTEGER,
            skipped INTEGER,
            new_refresh_token TEXT NOT NULL DEFAULT '',
            error TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS job_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_id TEXT NOT NULL,
            line TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_job_logs_job_id ON job_logs(job_id);
        """
        with self._lock:
            with self._connect() as conn:
                conn.executescript(schema_sql)

    def create(self) -> Job:
        job = Job(job_id=_new_job_id())
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO sync_jobs(job_id, status, started_at)
                    VALUES (?, ?, ?)
                    """,
                    (job.job_id, JOB_RUNNING, _stamp(job.started_at)),
                )
                conn.commit()
        return job

    def update(self, job_id: str, **fields: Any) -> None:
        _check_fields(fields)
        columns: dict[str, Any] = {}
        for key, value in fields.items():
            if key == "result":
                columns.update(
                    added=value.added if value is not None else None,
                    updated=value.updated if value is not None else None,
                    deleted=value.deleted if value is not None else None,
                    total=value.total if value is not None else None,
                    skipped=value.skipped if value is not None else None,
                )
            elif key == "finished_at":
                columns[key] = _stamp(value) if value is not None else None
            else:
                columns[key] = str(value or "")
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE sync_jobs SET {assignments} WHERE job_id = ?",  # nosec B608
                    (*columns.values(), job_id),
                )
                conn.commit()
        if cursor.rowcount == 0:
            raise KeyError(job_id)

    def append_log(self, job_id: str, line: str) -> None:
        with self._lock:
            with self._connect() as conn:
                if conn.execute("SELECT 1 FROM sync_jobs WHERE job_id = ?", (job_id,)).fetchone() is None:
                    raise KeyError(job_id)
                conn.execute(
                    "INSERT INTO job_logs(job_id, line) VALUES (?, ?)",
                    (job_id, str(line)),
                )
                conn.commit()

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT job_id, status, started_at, finished_at, added, updated, deleted, total,
                           skipped, new_refresh_token, error
                    FROM sync_jobs
                    WHERE job_id = ?
                    """,
                    (job_id,),
                ).fetchone()
                if row is None:
                    return None
                log_rows = conn.execute(
                    "SELECT line FROM job_logs WHERE job_id = ? ORDER BY id ASC",
                    (job_id,),
                ).fetchall()
        result = None
        if row["total"] is not None:
            result = SyncResult(
                added=int(row["added"] or 0),
                updated=int(row["updated"] or 0),
                deleted=int(row["deleted"] or 0),
                total=int(row["total"] or 0),
                skipped=int(row["skipped"] or 0),
            )
        return Job(
            job_id=str(row["job_id"]),
            status=str(row["status"]),
            logs=[str(item["line"]) for item in log_rows],
            result=result,
            new_refresh_token=str(row["new_refresh_token"] or ""),
            error=str(row["error"] or ""),
            started_at=parse_iso_datetime(row["started_at"]),
            finished_at=parse_iso_datetime(row["finished_at"]),
        )

    def expire(self, max_age: timedelta, now: datetime | None = None) -> int:
        cutoff = _stamp((now or _utc_now()) - max_age)
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT job_id FROM sync_jobs WHERE status != ? AND started_at < ?",
                    (JOB_RUNNING, cutoff),
                ).fetchall()
                job_ids = [str(row["job_id"]) for row in rows]
                for job_id in job_ids:
                    conn.execute("DELETE FROM job_logs WHERE job_id = ?", (job_id,))
                    conn.execute("DELETE FROM sync_jobs WHERE job_id = ?", (job_id,))
                conn.commit()
        return len(job_ids)


def build_job_store(backend: str, state_path: str) -> JobStore:
    if backend == "sqlite":
        return SQLiteJobStore(state_path)
    return MemoryJobStore()
