"""Project merge store.

Adapters never write ``raw_data`` directly. Each provider owns exactly one key
of the map and :func:`merge_fragment` replaces that key wholesale, leaving the
other providers' fragments untouched.

Scalar columns that several providers could claim (``tvl_usd``, ``is_active``,
the GitHub counters) go through :func:`set_scalar`, which records which
provider wrote the value and refuses writes from providers ranked below the
current owner.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect as sa_inspect, select
from sqlalchemy.orm import Session

from voidsync.models import Category, Project
from voidsync.utils import utc_now

log = logging.getLogger(__name__)

# Providers allowed to write each scalar, highest precedence first.
FIELD_PRECEDENCE: dict[str, tuple[str, ...]] = {
    "tvl_usd": ("defillama",),
    "is_active": ("ecosystem",),
    "github_stars": ("github",),
    "github_forks": ("github",),
    "github_open_issues": ("github",),
    "github_language": ("github",),
    "last_github_commit": ("github",),
}


class AttributionError(ValueError):
    """A provider tried to write a scalar field it does not own."""


def merge_fragment(session: Session, project: Project, provider: str, fragment: dict[str, Any]) -> dict[str, Any]:
    """Replace ``raw_data[provider]`` with *fragment* stamped with ``synced_at``.

    The row is re-read first so fragments written by other sessions since the
    project was loaded are kept. Returns the stored fragment.
    """
    state = sa_inspect(project)
    if state.persistent:
        session.refresh(project, ["raw_data"])
    stamped = {**fragment, "synced_at": utc_now().isoformat()}
    # JSON columns only detect reassignment, never in-place mutation
    project.raw_data = {**(project.raw_data or {}), provider: stamped}
    return stamped


def get_fragment(project: Project, provider: str) -> dict[str, Any]:
    fragment = (project.raw_data or {}).get(provider)
    return fragment if isinstance(fragment, dict) else {}


def set_scalar(project: Project, field: str, value: Any, provider: str) -> bool:
    """Write a provider-attributed scalar. Returns ``False`` if outranked.

    Raises :class:`AttributionError` if *provider* may never write *field*.
    """
    allowed = FIELD_PRECEDENCE.get(field)
    if allowed is None or provider not in allowed:
        raise AttributionError(f"Provider {provider!r} cannot write {field!r}")
    sources = dict(project.field_sources or {})
    owner = (sources.get(field) or {}).get("provider")
    if owner in allowed and allowed.index(owner) < allowed.index(provider):
        log.debug("Skipping %s.%s from %s (owned by %s)", project.slug, field, provider, owner)
        return False
    setattr(project, field, value)
    sources[field] = {"provider": provider, "at": utc_now().isoformat()}
    project.field_sources = sources
    return True


def get_project_by_slug(session: Session, slug: str) -> Project | None:
    return session.execute(select(Project).where(Project.slug == slug)).scalars().first()


def upsert_project(session: Session, slug: str, **fields: Any) -> tuple[Project, bool]:
    """Create or update the single project row for *slug*. Returns ``(project, created)``."""
    project = get_project_by_slug(session, slug)
    created = project is None
    if created:
        project = Project(slug=slug, raw_data={}, field_sources={})
    for field, value in fields.items():
        setattr(project, field, value)
    if created:
        session.add(project)
        # the session does not autoflush; later lookups by slug must see this row
        session.flush()
    return project, created


def all_projects(session: Session) -> list[Project]:
    return list(session.execute(select(Project).order_by(Project.id)).scalars().all())


def projects_in_category(session: Session, category_slug: str) -> list[Project] | None:
    """Projects in a category, or ``None`` when the category does not exist."""
    category_id = session.execute(
        select(Category.id).where(Category.slug == category_slug)
    ).scalar_one_or_none()
    if category_id is None:
        return None
    return list(session.execute(
        select(Project).where(Project.category_id == category_id).order_by(Project.id)
    ).scalars().all())
