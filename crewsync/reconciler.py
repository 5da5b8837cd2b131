from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from crewsync.errors import RemoteCallError, RemoteListingFailure
from crewsync.google_calendar import RemoteCalendar
from crewsync.models import CanonicalEvent, RemoteEvent, SyncConfig, SyncResult, SyncWindow

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]


def normalize_external_id(value: str | None) -> str:
    return str(value or "").strip().lower()


def is_namespaced(remote_event: RemoteEvent, sync_config: SyncConfig) -> bool:
    external_id = normalize_external_id(remote_event.external_id)
    if not external_id:
        return False
    if external_id.endswith(sync_config.id_suffix):
        return True
    return sync_config.description_marker in (remote_event.description or "")


@dataclass
class ReconcilePlan:
    window: SyncWindow
    deletions: list[RemoteEvent] = field(default_factory=list)
    updates: list[tuple[str, CanonicalEvent]] = field(default_factory=list)
    inserts: list[CanonicalEvent] = field(default_factory=list)


def list_remote_events(
    remote: RemoteCalendar,
    calendar_id: str,
    window: SyncWindow,
) -> list[RemoteEvent]:
    collected: list[RemoteEvent] = []
    page_token: str | None = None
    pages = 0
    while True:
        try:
            events, page_token = remote.list_events(calendar_id, window, True, page_token)
        except RemoteCallError as exc:
            raise RemoteListingFailure(f"Listing {calendar_id} failed: {exc}") from exc
        collected.extend(events)
        pages += 1
        if not page_token:
            break
    logger.debug("Listed %d remote events over %d page(s)", len(collected), pages)
    return collected


def plan_changes(
    local_events: Sequence[CanonicalEvent],
    remote_events: Sequence[RemoteEvent],
    window: SyncWindow,
    *,
    sync_config: SyncConfig,
    log: LogSink,
) -> ReconcilePlan:
    local_ids = {normalize_external_id(event.id) for event in local_events}
    mapped: dict[str, RemoteEvent] = {}
    plan = ReconcilePlan(window=window)

    for remote_event in remote_events:
        if not is_namespaced(remote_event, sync_config):
            continue
        external_id = normalize_external_id(remote_event.external_id)
        if external_id in mapped:
            logger.warning("Duplicate remote events share external id %s", external_id)
            log(f"Duplicate remote event for {external_id}; keeping {mapped[external_id].remote_id}")
            continue
        mapped[external_id] = remote_event
        # Cancelled entries stay mapped so an update can revive them; they are never pruned again.
        if external_id not in local_ids and not remote_event.cancelled:
            plan.deletions.append(remote_event)

    for event in local_events:
        existing = mapped.get(normalize_external_id(event.id))
        if existing is not None:
            plan.updates.append((existing.remote_id, event))
        else:
            plan.inserts.append(event)
    return plan


def apply_plan(
    plan: ReconcilePlan,
    remote: RemoteCalendar,
    calendar_id: str,
    *,
    total: int,
    log: LogSink,
) -> SyncResult:
    result = SyncResult(total=total)

    for remote_event in plan.deletions:
        label = remote_event.title or remote_event.external_id or remote_event.remote_id
        try:
            remote.delete_event(calendar_id, remote_event.remote_id)
        except RemoteCallError as exc:
            if exc.gone:
                result.deleted += 1
                log(f"Already deleted: {label}")
                continue
            result.skipped += 1
            log(f"Delete failed for {label}: {exc}")
            continue
        result.deleted += 1
        log(f"Deleted: {label}")

    for remote_id, event in plan.updates:
        try:
            remote.update_event(calendar_id, remote_id, event)
        except RemoteCallError as exc:
            result.skipped += 1
            log(f"Update failed for {event.title}: {exc}")
            continue
        result.updated += 1
        log(f"Updated: {event.title}")

    for event in plan.inserts:
        try:
            remote.insert_event(calendar_id, event, event.id)
        except RemoteCallError as exc:
            result.skipped += 1
            log(f"Insert failed for {event.title}: {exc}")
            continue
        result.added += 1
        log(f"Added: {event.title}")

    return result


def reconcile(
    local_events: Sequence[CanonicalEvent],
    remote: RemoteCalendar,
    calendar_id: str,
    *,
    sync_config: SyncConfig,
    log: LogSink | None = None,
    window: SyncWindow | None = None,
) -> SyncResult:
    emit = log or logger.info
    if not local_events:
        if window is None:
            return SyncResult()
    else:
        covering = SyncWindow.covering(list(local_events), sync_config.window_padding_days)
        window = covering if window is None else window.union(covering)
    emit(f"Sync window: {window.start.date().isoformat()} to {window.end.date().isoformat()}")
    remote_events = list_remote_events(remote, calendar_id, window)
    plan = plan_changes(local_events, remote_events, window, sync_config=sync_config, log=emit)
    emit(
        f"Planned {len(plan.deletions)} deletion(s), {len(plan.updates)} update(s), "
        f"{len(plan.inserts)} insert(s)"
    )
    result = apply_plan(plan, remote, calendar_id, total=len(local_events), log=emit)
    emit(f"Sync finished: added {result.added}, updated {result.updated}, deleted {result.deleted}")
    return result
