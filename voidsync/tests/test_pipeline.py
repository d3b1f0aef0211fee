from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from voidsync import pipeline
from voidsync.categories import CategoryStage
from voidsync.config import Settings
from voidsync.models import Base, Category, SyncLock, SyncLog
from voidsync.pacing import TokenBucket
from voidsync.sources.fastnear import FastNearAdapter
from voidsync.store import upsert_project
from voidsync.utils import utc_now


# ---------------------------------------------------------------------------
# Fixtures & fake stages
# ---------------------------------------------------------------------------


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def settings():
    return Settings(
        database_url="sqlite://",
        budget_seconds=5.0,
        lock_ttl_seconds=600.0,
        stage_order=[],
        disabled_stages=set(),
    )


class RecordingStage:
    def __init__(self, name: str, result: dict | None = None, calls: list[str] | None = None):
        self.name = name
        self.result = result or {"enriched": 1}
        self.calls = calls if calls is not None else []

    async def run(self, session):
        self.calls.append(self.name)
        return dict(self.result)


class BoomStage:
    name = "boom"

    async def run(self, session):
        raise RuntimeError("database went away")


class SlowStage:
    name = "slow"

    async def run(self, session):
        await asyncio.sleep(5)
        return {"enriched": 1}


def _logs(session_factory) -> list[SyncLog]:
    session = session_factory()
    try:
        return list(session.execute(select(SyncLog).order_by(SyncLog.id)).scalars().all())
    finally:
        session.close()


def _lock(session_factory) -> SyncLock | None:
    session = session_factory()
    try:
        return session.get(SyncLock, pipeline.RUN_LOCK)
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Tests: stage ordering and execution
# ---------------------------------------------------------------------------


class TestOrderStages:
    def test_default_order_has_ten_stages(self):
        assert pipeline.STAGE_NAMES[0] == "categories"
        assert pipeline.STAGE_NAMES[1] == "ecosystem"
        assert pipeline.STAGE_NAMES[-1] == "opportunities"
        assert len(pipeline.STAGE_NAMES) == 10

    def test_named_stages_move_first(self):
        stages = [RecordingStage(n) for n in ("a", "b", "c", "d")]
        ordered = pipeline.order_stages(stages, ["c", "a"])
        assert [s.name for s in ordered] == ["c", "a", "b", "d"]

    def test_empty_order_keeps_stages(self):
        stages = [RecordingStage(n) for n in ("a", "b")]
        assert pipeline.order_stages(stages, []) == stages


class TestRunStages:
    @pytest.mark.asyncio
    async def test_disabled_stage_is_reported_not_run(self, session_factory):
        calls: list[str] = []
        stages = [RecordingStage("a", calls=calls), RecordingStage("b", calls=calls)]
        session = session_factory()
        results = await pipeline.run_stages(session, stages, 5.0, {"a"})
        session.close()
        assert calls == ["b"]
        assert results["a"] == {"status": "disabled"}

    @pytest.mark.asyncio
    async def test_budget_exhaustion(self, session_factory):
        calls: list[str] = []
        stages = [RecordingStage("first", calls=calls), SlowStage(), RecordingStage("last", calls=calls)]
        session = session_factory()
        results = await pipeline.run_stages(session, stages, 0.2)
        session.close()
        assert results["first"] == {"enriched": 1}
        assert results["slow"] == {"status": "timeout"}
        assert results["last"] == {"status": "budget_exhausted"}
        assert calls == ["first"]

    def test_records_processed(self):
        results = {"a": {"enriched": 3}, "b": {"status": "disabled"}, "c": {"enriched": 2, "failed": 9}}
        assert pipeline.records_processed(results) == 5


# ---------------------------------------------------------------------------
# Tests: run_sync and the SyncLog lifecycle
# ---------------------------------------------------------------------------


class TestRunSync:
    @pytest.mark.asyncio
    async def test_completed_run(self, session_factory, settings):
        stages = [RecordingStage("a", {"enriched": 2}), RecordingStage("b", {"enriched": 3})]
        outcome = await pipeline.run_sync("cron-ecosystem", session_factory, settings=settings, stages=stages)

        assert outcome["success"] is True
        assert set(outcome["results"]) == {"a", "b"}
        [row] = _logs(session_factory)
        assert row.source == "cron-ecosystem"
        assert row.status == "completed"
        assert row.records_processed == 5
        assert row.completed_at is not None

    @pytest.mark.asyncio
    async def test_failing_provider_does_not_fail_run(self, session_factory, settings):
        session = session_factory()
        upsert_project(session, "ref-finance", name="Ref Finance")
        upsert_project(session, "paras", name="Paras")
        session.commit()
        session.close()

        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        adapter = FastNearAdapter(client, settings, pacer=TokenBucket(1_000_000.0))
        outcome = await pipeline.run_sync(
            "ecosystem", session_factory, settings=settings, stages=[CategoryStage(), adapter]
        )

        assert outcome["success"] is True
        assert outcome["results"]["fastnear"]["failed"] == 2
        assert outcome["results"]["fastnear"]["enriched"] == 0
        assert outcome["results"]["categories"]["count"] == 21
        assert _logs(session_factory)[-1].status == "completed"

    @pytest.mark.asyncio
    async def test_malformed_payload_does_not_fail_run(self, session_factory, settings):
        session = session_factory()
        upsert_project(session, "ref-finance", name="Ref Finance")
        upsert_project(session, "paras", name="Paras")
        session.commit()
        session.close()

        def handler(request):
            if "v2.ref-finance.near" in request.url.path:
                return httpx.Response(200, json={"state": "gone"})
            return httpx.Response(200, json={"state": {"balance": "0"}, "tokens": []})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = FastNearAdapter(client, settings, pacer=TokenBucket(1_000_000.0))
        outcome = await pipeline.run_sync("ecosystem", session_factory, settings=settings, stages=[adapter])

        assert outcome["success"] is True
        assert outcome["results"]["fastnear"]["failed"] == 1
        assert outcome["results"]["fastnear"]["enriched"] == 1
        assert _logs(session_factory)[-1].status == "completed"

    @pytest.mark.asyncio
    async def test_exception_marks_log_failed_and_reraises(self, session_factory, settings):
        stages = [CategoryStage(), BoomStage()]
        with pytest.raises(RuntimeError, match="database went away"):
            await pipeline.run_sync("ecosystem", session_factory, settings=settings, stages=stages)

        [row] = _logs(session_factory)
        assert row.status == "failed"
        assert row.error_message == "database went away"
        assert row.completed_at is not None
        # the categories stage committed before the failure
        session = session_factory()
        assert session.execute(select(Category)).first() is not None
        session.close()

    @pytest.mark.asyncio
    async def test_refuses_while_another_run_holds_the_lock(self, session_factory, settings):
        session = session_factory()
        session.add(SyncLock(name=pipeline.RUN_LOCK, source="cron-ecosystem", token="held", acquired_at=utc_now()))
        session.commit()
        session.close()
        calls: list[str] = []

        outcome = await pipeline.run_sync(
            "ecosystem", session_factory, settings=settings, stages=[RecordingStage("a", calls=calls)]
        )

        assert outcome["success"] is False
        assert outcome["skipped"] is True
        assert "cron-ecosystem" in outcome["reason"]
        assert calls == []
        assert _logs(session_factory) == []
        # the refused run leaves the holder's lock alone
        assert _lock(session_factory).token == "held"

    @pytest.mark.asyncio
    async def test_stale_lock_is_taken_over(self, session_factory, settings):
        session = session_factory()
        session.add(SyncLock(name=pipeline.RUN_LOCK, source="ecosystem", token="crashed",
                             acquired_at=utc_now() - timedelta(hours=2)))
        session.commit()
        session.close()

        outcome = await pipeline.run_sync(
            "ecosystem", session_factory, settings=settings, stages=[RecordingStage("a")]
        )

        assert outcome["success"] is True
        assert [row.status for row in _logs(session_factory)] == ["completed"]
        assert _lock(session_factory) is None

    @pytest.mark.asyncio
    async def test_lock_released_after_success_and_failure(self, session_factory, settings):
        await pipeline.run_sync("ecosystem", session_factory, settings=settings, stages=[RecordingStage("a")])
        assert _lock(session_factory) is None

        with pytest.raises(RuntimeError):
            await pipeline.run_sync("ecosystem", session_factory, settings=settings, stages=[BoomStage()])
        assert _lock(session_factory) is None

        outcome = await pipeline.run_sync("ecosystem", session_factory, settings=settings, stages=[RecordingStage("b")])
        assert outcome["success"] is True
        assert [row.status for row in _logs(session_factory)] == ["completed", "failed", "completed"]

    @pytest.mark.asyncio
    async def test_run_holds_the_lock_while_stages_execute(self, session_factory, settings):
        seen: list[str | None] = []

        class PeekStage:
            name = "peek"

            async def run(self, session):
                holder = _lock(session_factory)
                seen.append(holder.source if holder else None)
                nested = await pipeline.run_sync(
                    "cron-ecosystem", session_factory, settings=settings, stages=[RecordingStage("x")]
                )
                return {"enriched": 0, "nested_skipped": nested.get("skipped", False)}

        outcome = await pipeline.run_sync("cli", session_factory, settings=settings, stages=[PeekStage()])

        assert seen == ["cli"]
        assert outcome["results"]["peek"]["nested_skipped"] is True
        assert len(_logs(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_settings_disable_and_order(self, session_factory, settings):
        calls: list[str] = []
        stages = [RecordingStage(n, calls=calls) for n in ("a", "b", "c")]
        tuned = settings.model_copy(update={"stage_order": ["c"], "disabled_stages": {"b"}})

        outcome = await pipeline.run_sync("cli", session_factory, settings=tuned, stages=stages)

        assert calls == ["c", "a"]
        assert outcome["results"]["b"] == {"status": "disabled"}


class TestRunLock:
    def test_second_acquire_is_refused(self, session_factory):
        first, second = session_factory(), session_factory()
        token = pipeline.acquire_lock(first, "cron-ecosystem", 600.0)
        assert token is not None
        assert pipeline.acquire_lock(second, "ecosystem", 600.0) is None
        assert pipeline.lock_holder(second).source == "cron-ecosystem"
        first.close()
        second.close()

    def test_stale_lock_goes_to_exactly_one_contender(self, session_factory):
        session = session_factory()
        session.add(SyncLock(name=pipeline.RUN_LOCK, source="old", token="old",
                             acquired_at=utc_now() - timedelta(seconds=30)))
        session.commit()
        session.close()

        first, second = session_factory(), session_factory()
        winner = pipeline.acquire_lock(first, "a", 10.0)
        loser = pipeline.acquire_lock(second, "b", 10.0)

        assert winner is not None
        assert loser is None
        assert _lock(session_factory).token == winner
        first.close()
        second.close()

    def test_release_ignores_foreign_token(self, session_factory):
        session = session_factory()
        token = pipeline.acquire_lock(session, "cli", 600.0)
        session.close()

        pipeline.release_lock(session_factory, "not-mine")
        assert _lock(session_factory).token == token

        pipeline.release_lock(session_factory, token)
        assert _lock(session_factory) is None

    def test_release_never_raises(self):
        def broken_factory():
            raise RuntimeError("no database")

        pipeline.release_lock(broken_factory, "token")
