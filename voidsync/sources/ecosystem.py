"""NEAR ecosystem registry (``entities.json``).

The registry is the only adapter that creates projects. Every entity is
upserted by slug, classified into a category by keyword, and stored whole
under ``raw_data["ecosystem"]``. A second pass marks projects inactive once
GitHub has checked them and found no recent commits and no TVL.
"""
from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from voidsync.categories import category_ids_by_slug
from voidsync.sources.base import AdapterResult, ProviderError, SourceAdapter
from voidsync.store import all_projects, get_fragment, merge_fragment, set_scalar, upsert_project
from voidsync.utils import as_utc, slugify, utc_now

log = logging.getLogger(__name__)

STALE_AFTER = timedelta(days=180)
COMMIT_EVERY = 50

# First match wins; strategic categories come first.
_CATEGORY_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("ai-agents", re.compile(r"\b(ai|agents?|inference|machine.?learning|shade|llm|gpt|neural|model)\b")),
    ("privacy", re.compile(r"\b(privacy|zk|zero.?knowledge|private|confidential|secret|mixnet)\b")),
    ("chain-signatures", re.compile(r"\b(chain.?signatures?|mpc|multi.?party)\b")),
    ("intents", re.compile(r"\b(intents?|chain.?abstraction|multichain|interop|solver)\b")),
    ("bridges", re.compile(r"\b(bridges?|cross.?chain|wrapped|relayer|relay|rainbow)\b")),
    ("rwa", re.compile(r"\b(rwa|real.?world|tokeniz\w*|payroll|remittance|invoice)\b")),
    ("data-analytics", re.compile(r"\b(analytics|data\s|indexer|indexing|intelligence|dashboard|tracker|insight)\b")),
    ("meme-tokens", re.compile(r"\b(meme|memecoin|fair.?launch)\b")),
    ("launchpads", re.compile(r"\b(launchpad|ido|token.?sale|vesting)\b")),
    ("dex-trading", re.compile(r"\b(dex|swap|amm|order.?book|trading|exchange)\b")),
    ("prediction-markets", re.compile(r"\b(prediction|betting|forecast\w*)\b")),
    ("defi", re.compile(r"\b(lend\w*|borrow\w*|yield|stablecoin|liquidity|vault|derivatives|margin)\b")),
    ("staking-rewards", re.compile(r"\b(staking|stake|liquid.?staking|lockup|validator.?pool)\b")),
    ("gaming", re.compile(r"\b(gaming|games?|play.?to|metaverse|gamefi|p2e|virtual.?world)\b")),
    ("nfts", re.compile(r"\b(nfts?|art|collectibles?|mint\w*|digital.?art|generative|pfp)\b")),
    ("daos", re.compile(r"\b(daos?|governance|voting|treasury|proposal|multisig)\b")),
    ("social", re.compile(r"\b(social|community|creator|content|messaging|chat|forum|feed)\b")),
    ("education", re.compile(r"\b(education|learn\w*|tutorial|bootcamp|course|academy|onboard\w*)\b")),
    ("wallets", re.compile(r"\b(wallets?|identity|auth|login|account|signer|key.?manage\w*)\b")),
    ("dev-tools", re.compile(r"\b(sdk|tools?|debug\w*|test\w*|framework|library|cli|boilerplate|template|dev)\b")),
    ("infrastructure", re.compile(r"\b(oracle|payments?|rpc|node|validator|storage|explorer|infra)\b")),
    ("defi", re.compile(r"\b(defi|finance|protocol|farm)\b")),
]
DEFAULT_CATEGORY = "infrastructure"


def _tags(entity: dict[str, Any]) -> list[str]:
    raw = entity.get("category") or ""
    if isinstance(raw, list):
        return [str(t).strip().lower() for t in raw]
    return [t.strip().lower() for t in str(raw).split(",")]


def classify(entity: dict[str, Any]) -> str:
    """Category slug for a registry entity, from its tags, one-liner and title."""
    combined = " ".join([
        *_tags(entity),
        str(entity.get("oneliner") or "").lower(),
        str(entity.get("title") or "").lower(),
    ])
    for slug, pattern in _CATEGORY_RULES:
        if pattern.search(combined):
            return slug
    return DEFAULT_CATEGORY


def is_abandoned(project, now) -> bool:
    """GitHub-checked, no commit in the last 180 days, and no TVL."""
    if not get_fragment(project, "github"):
        return False
    last_commit = as_utc(project.last_github_commit)
    stale = last_commit is None or last_commit < now - STALE_AFTER
    return stale and not project.tvl_usd


class EcosystemAdapter(SourceAdapter):
    name = "ecosystem"

    async def fetch_entities(self) -> list[dict[str, Any]]:
        data = await self.get_json(self.settings.ecosystem_url)
        if isinstance(data, dict):
            data = list(data.values())
        if not isinstance(data, list):
            raise ProviderError(self.name, "registry listing is not a list")
        return [e for e in data if isinstance(e, dict)]

    async def sync(self, session: Session) -> AdapterResult:
        try:
            entities = await self.fetch_entities()
        except ProviderError as exc:
            log.warning("Ecosystem registry unavailable: %s", exc)
            return AdapterResult.unavailable(str(exc))

        category_ids = category_ids_by_slug(session)
        result = AdapterResult(total=len(entities), extra={"created": 0, "deactivated": 0})
        seen: set[str] = set()

        for i, entity in enumerate(entities, start=1):
            title = str(entity.get("title") or "").strip()
            slug = str(entity.get("slug") or "").strip() or slugify(title)
            if not title or not slug or slug in seen:
                result.skipped += 1
                continue
            seen.add(slug)
            project, created = upsert_project(
                session,
                slug,
                name=title,
                description=entity.get("oneliner") or "",
                category_id=category_ids.get(classify(entity)) or category_ids.get(DEFAULT_CATEGORY),
                website_url=entity.get("website") or "",
                github_url=entity.get("github") or "",
                twitter_url=entity.get("twitter") or "",
                logo_url=entity.get("logo") or "",
            )
            set_scalar(project, "is_active", True, self.name)
            merge_fragment(session, project, self.name, entity)
            result.enriched += 1
            result.extra["created"] += int(created)
            if i % COMMIT_EVERY == 0:
                session.commit()
        session.commit()

        now = utc_now()
        for project in all_projects(session):
            if project.is_active and is_abandoned(project, now):
                set_scalar(project, "is_active", False, self.name)
                result.extra["deactivated"] += 1
        session.commit()

        result.extra["processed"] = result.enriched
        return result
