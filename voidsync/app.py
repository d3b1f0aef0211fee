from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import text
from sqlalchemy.orm import Session

from voidsync import pipeline, services
from voidsync.config import get_settings
from voidsync.db import get_session, init_db
from voidsync.schemas import (
    CategoryGapOut,
    CategoryOut,
    OpportunityOut,
    StatsOut,
    SyncLogOut,
    SyncResponse,
    SyncUsage,
)

log = logging.getLogger(__name__)

CRON_SOURCE = "cron-ecosystem"
MANUAL_SOURCE = "ecosystem"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Voidsync",
    version="0.1.0",
    description=(
        "NEAR ecosystem ingestion and gap scoring. Sync triggers require a shared "
        "secret; read endpoints are open."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Sync", "description": "Trigger and audit pipeline runs."},
        {"name": "Opportunities", "description": "Ranked opportunity gaps per category."},
        {"name": "Categories", "description": "Category catalog and live gap breakdowns."},
        {"name": "Stats", "description": "Aggregate statistics and health."},
    ],
)

bearer = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _secret_matches(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_cron_caller(
    authorization: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
) -> None:
    settings = get_settings()
    if settings.cron_secret:
        if not _secret_matches(authorization, f"Bearer {settings.cron_secret}"):
            raise HTTPException(401, "Unauthorized")
        return
    # no secret configured: only the platform scheduler may call
    if settings.cron_trusted_user_agent not in (user_agent or ""):
        raise HTTPException(401, "Unauthorized: set CRON_SECRET")


def require_sync_key(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)) -> None:
    settings = get_settings()
    token = credentials.credentials if credentials else None
    if not _secret_matches(token, settings.sync_api_key):
        raise HTTPException(401, "Unauthorized")


async def _trigger(source: str):
    try:
        return await pipeline.run_sync(source)
    except Exception as exc:
        log.error("Sync %s failed: %s", source, exc)
        return JSONResponse(
            {"success": False, "error": "Sync failed", "message": str(exc)},
            status_code=500,
        )


# ---------------------------------------------------------------------------
# Routes: Sync
# ---------------------------------------------------------------------------


@app.get("/api/cron/sync", response_model=SyncResponse, tags=["Sync"],
         summary="Scheduled full sync", dependencies=[Depends(require_cron_caller)])
async def cron_sync():
    return await _trigger(CRON_SOURCE)


@app.post("/api/sync", response_model=SyncResponse, tags=["Sync"],
          summary="Manual full sync", dependencies=[Depends(require_sync_key)])
async def manual_sync():
    return await _trigger(MANUAL_SOURCE)


@app.get("/api/sync", response_model=SyncUsage, tags=["Sync"], summary="How to trigger a sync")
async def sync_usage():
    return {
        "message": "POST to this endpoint to trigger a data sync.",
        "usage": 'curl -X POST http://localhost:8001/api/sync -H "Authorization: Bearer $SYNC_API_KEY"',
    }


@app.get("/api/sync/logs", response_model=list[SyncLogOut], tags=["Sync"], summary="Recent sync runs")
async def sync_logs(limit: int = Query(20, ge=1, le=200), session: Session = Depends(db_session)):
    return services.recent_sync_logs(session, limit)


# ---------------------------------------------------------------------------
# Routes: Opportunities & Categories
# ---------------------------------------------------------------------------


@app.get("/api/opportunities", response_model=list[OpportunityOut], tags=["Opportunities"],
         summary="Best opportunities by gap score")
async def list_opportunities(
    category: str | None = Query(None, description="Category slug"),
    limit: int = Query(20, ge=1, le=200),
    session: Session = Depends(db_session),
):
    return services.top_opportunities(session, category, limit)


@app.get("/api/categories", response_model=list[CategoryOut], tags=["Categories"])
async def list_categories(session: Session = Depends(db_session)):
    return services.list_categories(session)


@app.get("/api/categories/{slug}/gap", response_model=CategoryGapOut, tags=["Categories"],
         summary="Live gap score breakdown")
async def category_gap(slug: str, session: Session = Depends(db_session)):
    gap = services.category_gap(session, slug)
    if gap is None:
        raise HTTPException(404, "Category not found")
    return gap


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"])
async def stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


@app.get("/api/health", tags=["Stats"])
async def health(session: Session = Depends(db_session)):
    session.execute(text("SELECT 1"))
    return {"status": "ok"}


def main():
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("voidsync.app:app", host="127.0.0.1", port=8001)


if __name__ == "__main__":
    main()
