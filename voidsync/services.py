"""Shared read-side logic for the API and the MCP server."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from voidsync.models import Category, Opportunity, Project, SyncLog
from voidsync.opportunities import competition_level, score_category

log = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


def opportunity_summary(opp: Opportunity) -> dict:
    return {
        "id": opp.id,
        "title": opp.title,
        "description": opp.description or "",
        "reasoning": opp.reasoning or "",
        "category": opp.category.slug if opp.category else None,
        "gap_score": opp.gap_score,
        "demand_score": opp.demand_score,
        "competition_level": opp.competition_level,
        "difficulty": opp.difficulty,
        "suggested_features": list(opp.suggested_features or []),
        "updated_at": _iso(opp.updated_at),
    }


def category_summary(category: Category, project_count: int = 0) -> dict:
    return {
        "id": category.id,
        "slug": category.slug,
        "name": category.name,
        "description": category.description or "",
        "icon": category.icon or "",
        "is_strategic": bool(category.is_strategic),
        "strategic_multiplier": category.strategic_multiplier,
        "project_count": project_count,
    }


def sync_log_summary(row: SyncLog) -> dict:
    return {
        "id": row.id,
        "source": row.source,
        "status": row.status,
        "records_processed": row.records_processed or 0,
        "error_message": row.error_message,
        "started_at": _iso(row.started_at),
        "completed_at": _iso(row.completed_at),
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def top_opportunities(session: Session, category: str | None = None, limit: int = 20) -> list[dict]:
    """Best opportunities first: highest gap score, then newest."""
    query = select(Opportunity).join(Category)
    if category:
        query = query.where(Category.slug == category)
    query = query.order_by(Opportunity.gap_score.desc(), Opportunity.id.desc()).limit(limit)
    return [opportunity_summary(o) for o in session.execute(query).scalars().all()]


def list_categories(session: Session) -> list[dict]:
    counts = dict(session.execute(
        select(Project.category_id, func.count(Project.id)).group_by(Project.category_id)
    ).all())
    categories = session.execute(select(Category).order_by(Category.slug)).scalars().all()
    return [category_summary(c, counts.get(c.id, 0)) for c in categories]


def category_gap(session: Session, slug: str) -> dict | None:
    """Live gap score breakdown for one category, ``None`` if it does not exist."""
    category = session.execute(select(Category).where(Category.slug == slug)).scalars().first()
    if category is None:
        return None
    stats, breakdown = score_category(session, category)
    return {
        "category": category_summary(category, stats.total_projects),
        "total_projects": stats.total_projects,
        "active_projects": stats.active_projects,
        "total_tvl": stats.total_tvl,
        "competition_level": competition_level(stats.active_projects),
        **breakdown.to_dict(),
    }


def recent_sync_logs(session: Session, limit: int = 20) -> list[dict]:
    rows = session.execute(select(SyncLog).order_by(SyncLog.id.desc()).limit(limit)).scalars().all()
    return [sync_log_summary(r) for r in rows]


def compute_stats(session: Session) -> dict:
    projects = session.execute(select(Project)).scalars().all()
    by_provider: Counter[str] = Counter()
    active = 0
    total_tvl = 0.0
    for project in projects:
        if project.is_active:
            active += 1
        total_tvl += project.tvl_usd or 0.0
        for provider in (project.raw_data or {}):
            by_provider[provider] += 1
    last = session.execute(
        select(SyncLog).where(SyncLog.status == "completed").order_by(SyncLog.id.desc()).limit(1)
    ).scalars().first()
    return {
        "projects": len(projects),
        "active_projects": active,
        "total_tvl": total_tvl,
        "categories": session.execute(select(func.count(Category.id))).scalar_one(),
        "opportunities": session.execute(select(func.count(Opportunity.id))).scalar_one(),
        "by_provider": dict(by_provider),
        "last_sync": sync_log_summary(last) if last else None,
    }
