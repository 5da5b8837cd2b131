from __future__ import annotations

import os
from datetime import timedelta
from typing import Any

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from crewsync.config_manager import ConfigManager
from crewsync.duty_feed import DutyFeed, IcsDutyFeed, StaticDutyFeed
from crewsync.ics import render_calendar
from crewsync.job_store import build_job_store
from crewsync.models import RosterPeriod
from crewsync.normalizer import normalize_all
from crewsync.scheduler import JobSweeper
from crewsync.sync_engine import SyncEngine


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class DutyPayload(BaseModel):
    name: str = ""
    start: str = ""
    end: str = ""


class SyncRequest(BaseModel):
    year: int
    month: int = Field(ge=1, le=12)
    refresh_token: str = ""
    calendar_id: str = ""
    duties: list[DutyPayload] = Field(default_factory=list)
    ics: str | None = None


class IcsRequest(BaseModel):
    duties: list[DutyPayload] = Field(default_factory=list)


class AppContext:
    def __init__(self, config_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        config = self.config_manager.load()
        self.job_store = build_job_store(config.jobs.backend, config.jobs.state_path)
        self.sync_engine = SyncEngine(self.config_manager, self.job_store)
        self.sweeper = JobSweeper(
            self.job_store,
            max_age=timedelta(minutes=config.jobs.max_age_minutes),
            interval_seconds=config.jobs.sweep_interval_seconds,
        )


def _static_feed(items: list[DutyPayload]) -> StaticDutyFeed:
    return StaticDutyFeed.from_dicts(item.model_dump() for item in items)


def create_app() -> FastAPI:
    config_path = os.getenv("CREWSYNC_CONFIG_PATH", "config.yaml")
    context = AppContext(config_path=config_path)

    app = FastAPI(title="CrewSync", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.sweeper.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.sweeper.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        config_manager = app.state.context.config_manager
        return {"config": config_manager.masked(), "meta": config_manager.masked_meta()}

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        try:
            app.state.context.config_manager.update(request.payload)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "message": "config updated",
            "config": app.state.context.config_manager.masked(),
        }

    @app.post("/api/sync")
    def start_sync(request: SyncRequest, background_tasks: BackgroundTasks) -> dict[str, str]:
        if not request.refresh_token.strip():
            raise HTTPException(status_code=400, detail="refresh_token is required")
        feed: DutyFeed
        if request.ics:
            feed = IcsDutyFeed(request.ics)
        elif request.duties:
            feed = _static_feed(request.duties)
        else:
            raise HTTPException(status_code=400, detail="duties or ics is required")
        period = RosterPeriod(year=request.year, month=request.month)
        engine = app.state.context.sync_engine
        job_id = engine.start_job()
        background_tasks.add_task(
            engine.run_job,
            job_id,
            period,
            request.refresh_token,
            request.calendar_id,
            feed=feed,
        )
        return {"job_id": job_id}

    @app.get("/api/sync/{job_id}")
    def sync_status(job_id: str) -> dict[str, Any]:
        job = app.state.context.job_store.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job not found")
        return job.to_dict()

    @app.post("/api/ics")
    def export_ics(request: IcsRequest) -> Response:
        config = app.state.context.config_manager.load()
        duties = _static_feed(request.duties).fetch_duties(None)
        events = normalize_all(duties, sync_config=config.sync)
        content = render_calendar(events, sync_config=config.sync)
        return Response(
            content=content,
            media_type="text/calendar",
            headers={"Content-Disposition": 'attachment; filename="roster.ics"'},
        )

    return app
