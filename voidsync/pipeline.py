"""Sync orchestrator.

One run is an ordered list of stages sharing a session and an HTTP client:
categories, the eight provider adapters, then opportunity generation. Each
run is audited by a single :class:`~voidsync.models.SyncLog` row that moves
``started -> completed`` or ``started -> failed``.

Provider trouble never fails a run: adapters count it and move on. What
does fail a run is an exception escaping a stage (a database error, a bug);
the log row is then marked failed from a fresh session and the exception is
re-raised for the caller (HTTP 500, CLI exit code).

Only one run at a time holds the :class:`~voidsync.models.SyncLock` row.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Any, Protocol

import httpx
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from voidsync.categories import CategoryStage
from voidsync.config import Settings, get_settings
from voidsync.models import SyncLock, SyncLog
from voidsync.opportunities import OpportunityStage
from voidsync.sources.astrodao import AstroDaoAdapter
from voidsync.sources.defillama import DefiLlamaAdapter
from voidsync.sources.ecosystem import EcosystemAdapter
from voidsync.sources.fastnear import FastNearAdapter
from voidsync.sources.github import GithubAdapter
from voidsync.sources.mintbase import MintbaseAdapter
from voidsync.sources.nearblocks import NearBlocksAdapter
from voidsync.sources.pikespeak import PikespeakAdapter
from voidsync.utils import utc_now

log = logging.getLogger(__name__)

ADAPTER_CLASSES = (
    EcosystemAdapter,
    DefiLlamaAdapter,
    GithubAdapter,
    NearBlocksAdapter,
    FastNearAdapter,
    PikespeakAdapter,
    MintbaseAdapter,
    AstroDaoAdapter,
)

STAGE_NAMES = (CategoryStage.name, *(cls.name for cls in ADAPTER_CLASSES), OpportunityStage.name)


class Stage(Protocol):
    name: str

    async def run(self, session: Session) -> dict[str, Any]:
        ...


def build_stages(client: httpx.AsyncClient, settings: Settings) -> list[Stage]:
    return [
        CategoryStage(),
        *(cls(client, settings) for cls in ADAPTER_CLASSES),
        OpportunityStage(),
    ]


def order_stages(stages: list[Stage], order: Iterable[str]) -> list[Stage]:
    """Put stages named in *order* first, in that order; the rest keep their position."""
    rank = {name: i for i, name in enumerate(order)}
    if not rank:
        return list(stages)
    indexed = list(enumerate(stages))
    indexed.sort(key=lambda pair: (rank.get(pair[1].name, len(rank)), pair[0]))
    return [stage for _, stage in indexed]


async def run_stages(
    session: Session,
    stages: list[Stage],
    budget_seconds: float,
    disabled: Iterable[str] = (),
) -> dict[str, dict[str, Any]]:
    """Run *stages* in order within a shared wall-clock budget.

    A stage that overruns the remaining budget is cancelled and its
    uncommitted work rolled back; every later stage is reported as
    ``budget_exhausted``.
    """
    disabled = set(disabled)
    results: dict[str, dict[str, Any]] = {}
    deadline = time.monotonic() + budget_seconds
    exhausted = False
    for stage in stages:
        if stage.name in disabled:
            results[stage.name] = {"status": "disabled"}
            continue
        remaining = deadline - time.monotonic()
        if exhausted or remaining <= 0:
            results[stage.name] = {"status": "budget_exhausted"}
            exhausted = True
            continue
        started = time.monotonic()
        try:
            results[stage.name] = await asyncio.wait_for(stage.run(session), timeout=remaining)
        except TimeoutError:
            session.rollback()
            log.warning("Stage %s cancelled after %.1fs (run budget exhausted)", stage.name, remaining)
            results[stage.name] = {"status": "timeout"}
            exhausted = True
            continue
        log.info("Stage %s finished in %.2fs", stage.name, time.monotonic() - started)
    return results


def records_processed(results: dict[str, dict[str, Any]]) -> int:
    return sum(int(r.get("enriched") or 0) for r in results.values() if isinstance(r, dict))


# ---------------------------------------------------------------------------
# Run lock
# ---------------------------------------------------------------------------

RUN_LOCK = "sync"


def acquire_lock(session: Session, source: str, ttl_seconds: float) -> str | None:
    """Take the run lock, returning its token, or ``None`` while another run holds it.

    The lock row's primary key lets only one concurrent insert succeed. A
    lock older than *ttl_seconds* (a crashed run) is taken over by a
    conditional update, which again only one contender can win.
    """
    token = uuid.uuid4().hex
    now = utc_now()
    session.add(SyncLock(name=RUN_LOCK, source=source, token=token, acquired_at=now))
    try:
        session.commit()
        return token
    except IntegrityError:
        session.rollback()

    cutoff = now - timedelta(seconds=ttl_seconds)
    taken = session.execute(
        update(SyncLock)
        .where(SyncLock.name == RUN_LOCK, SyncLock.acquired_at < cutoff)
        .values(source=source, token=token, acquired_at=now)
    )
    session.commit()
    if taken.rowcount == 1:
        log.warning("Took over stale sync lock older than %.0fs", ttl_seconds)
        return token
    return None


def lock_holder(session: Session) -> SyncLock | None:
    return session.get(SyncLock, RUN_LOCK)


def release_lock(session_factory: Callable[[], Session], token: str) -> None:
    """Drop the lock if *token* still holds it. Never raises."""
    try:
        session = session_factory()
        try:
            session.execute(delete(SyncLock).where(SyncLock.name == RUN_LOCK, SyncLock.token == token))
            session.commit()
        finally:
            session.close()
    except Exception:
        log.exception("Could not release sync lock %s", token)


# ---------------------------------------------------------------------------
# SyncLog lifecycle
# ---------------------------------------------------------------------------


def start_sync_log(session: Session, source: str) -> SyncLog:
    row = SyncLog(source=source, status="started", records_processed=0, started_at=utc_now())
    session.add(row)
    session.commit()
    return row


def finish_sync_log(session: Session, row: SyncLog, processed: int) -> None:
    row.status = "completed"
    row.records_processed = processed
    row.completed_at = utc_now()
    session.commit()


def fail_sync_log(session_factory: Callable[[], Session], log_id: int, message: str) -> None:
    """Mark a run failed from a fresh session. Never raises."""
    try:
        session = session_factory()
        try:
            row = session.get(SyncLog, log_id)
            if row is not None:
                row.status = "failed"
                row.error_message = message[:2000]
                row.completed_at = utc_now()
                session.commit()
        finally:
            session.close()
    except Exception:
        log.exception("Could not mark sync log %s as failed", log_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
    )


async def run_sync(
    source: str,
    session_factory: Callable[[], Session] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
    stages: list[Stage] | None = None,
) -> dict[str, Any]:
    """Run one full sync pass and return ``{"success": True, "results": {...}}``.

    Returns ``{"success": False, "skipped": True, ...}`` without doing anything
    when another run holds the lock. The lock is released however the run
    ends. Re-raises any exception that fails the run after recording it on
    the SyncLog row.
    """
    if session_factory is None:
        from voidsync.db import get_session
        session_factory = get_session
    settings = settings or get_settings()

    session = session_factory()
    token = None
    try:
        token = acquire_lock(session, source, settings.lock_ttl_seconds)
        if token is None:
            holder = lock_holder(session)
            held_by = holder.source if holder is not None else "unknown"
            log.warning("Sync %s refused: a %s run still holds the lock", source, held_by)
            return {
                "success": False,
                "skipped": True,
                "reason": f"sync already running (source {held_by})",
            }

        sync_log = start_sync_log(session, source)
        log.info("Sync %s started (log %d)", source, sync_log.id)
        try:
            async with AsyncExitStack() as stack:
                if stages is None:
                    http = client or await stack.enter_async_context(_client(settings))
                    stages = build_stages(http, settings)
                results = await run_stages(
                    session,
                    order_stages(stages, settings.stage_order),
                    settings.budget_seconds,
                    settings.disabled_stages,
                )
            processed = records_processed(results)
            finish_sync_log(session, sync_log, processed)
        except Exception as exc:
            log.exception("Sync %s failed", source)
            session.rollback()
            fail_sync_log(session_factory, sync_log.id, str(exc) or type(exc).__name__)
            raise
        log.info("Sync %s completed: %d records", source, processed)
        return {"success": True, "results": results}
    finally:
        session.close()
        if token is not None:
            release_lock(session_factory, token)
