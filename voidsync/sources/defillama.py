from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from voidsync.matching import names_equal, names_match
from voidsync.models import Project
from voidsync.sources.base import AdapterResult, ProviderError, SourceAdapter
from voidsync.store import all_projects, get_fragment, merge_fragment, set_scalar
from voidsync.utils import to_number

log = logging.getLogger(__name__)

NEAR_CHAIN = "Near"

# Registry slug -> DeFiLlama protocol slug, where the names differ.
KNOWN_PROTOCOL_SLUGS: dict[str, str] = {
    "linear-protocol": "linear",
}


def near_tvl(protocol: dict[str, Any]) -> float:
    """TVL on NEAR specifically, falling back to the protocol total."""
    chain_tvls = protocol.get("chainTvls") or {}
    if isinstance(chain_tvls, dict) and NEAR_CHAIN in chain_tvls:
        return to_number(chain_tvls[NEAR_CHAIN])
    return to_number(protocol.get("tvl"))


def _protocol_names(protocol: dict[str, Any]) -> tuple[str, str]:
    return protocol.get("name") or "", protocol["slug"]


def assign_protocols(
    projects: list[Project],
    protocols: list[dict[str, Any]],
    remembered: Callable[[Project], str | None],
) -> dict[int, tuple[dict[str, Any], str]]:
    """Pair protocols with projects one to one: ``{project.id: (protocol, strategy)}``.

    Passes run in order and each only sees what earlier passes left
    unclaimed: the slug remembered from a previous run, known slug mappings,
    exact name matches, then substring matches.
    """
    by_slug = {p["slug"]: p for p in protocols}
    claims: dict[int, tuple[dict[str, Any], str]] = {}
    taken: set[str] = set()

    def claim(project: Project, protocol: dict[str, Any], strategy: str) -> None:
        claims[project.id] = (protocol, strategy)
        taken.add(protocol["slug"])

    def claim_by_slug(lookup: Callable[[Project], str | None], strategy: str) -> None:
        for project in projects:
            slug = lookup(project)
            if project.id not in claims and slug in by_slug and slug not in taken:
                claim(project, by_slug[slug], strategy)

    def claim_by_names(match: Callable[[str, str, Any], bool], strategy: str) -> None:
        for protocol in protocols:
            if protocol["slug"] in taken:
                continue
            for project in projects:
                if project.id not in claims and match(project.slug, project.name or "", _protocol_names(protocol)):
                    claim(project, protocol, strategy)
                    break

    claim_by_slug(remembered, "fragment:defillama")
    claim_by_slug(lambda p: KNOWN_PROTOCOL_SLUGS.get(p.slug), "known")
    claim_by_names(names_equal, "listing")
    claim_by_names(names_match, "substring")
    return claims


class DefiLlamaAdapter(SourceAdapter):
    """TVL for NEAR protocols from the DeFiLlama ``/protocols`` listing.

    The listing already carries every figure we store, so there are no
    per-project calls: ``failed`` only moves if the listing itself is bad.
    Each protocol's TVL lands on at most one project.
    """

    name = "defillama"
    min_interval = 0.05

    async def fetch_protocols(self) -> list[dict[str, Any]]:
        data = await self.get_json(f"{self.settings.defillama_url}/protocols")
        if not isinstance(data, list):
            raise ProviderError(self.name, "protocol listing is not a list")
        with self.parsing("protocol listing"):
            return [
                p for p in data
                if isinstance(p, dict) and isinstance(p.get("slug"), str) and p["slug"]
                and NEAR_CHAIN in (p.get("chains") or [])
            ]

    def remembered_slug(self, project: Project) -> str | None:
        slug = get_fragment(project, self.name).get("slug")
        return slug if isinstance(slug, str) else None

    async def sync(self, session: Session) -> AdapterResult:
        try:
            protocols = await self.fetch_protocols()
        except ProviderError as exc:
            log.warning("DeFiLlama unavailable: %s", exc)
            return AdapterResult.unavailable(str(exc))

        projects = all_projects(session)
        claims = assign_protocols(projects, protocols, self.remembered_slug)
        result = AdapterResult(total=len(projects))
        total_tvl = 0.0
        for project in projects:
            if project.id not in claims:
                result.skipped += 1
                # drop a figure left by an earlier run whose protocol is now claimed elsewhere
                owner = ((project.field_sources or {}).get("tvl_usd") or {}).get("provider")
                if owner == self.name and project.tvl_usd:
                    set_scalar(project, "tvl_usd", 0.0, self.name)
                    session.commit()
                continue
            protocol, strategy = claims[project.id]
            tvl = near_tvl(protocol)
            set_scalar(project, "tvl_usd", tvl, self.name)
            merge_fragment(session, project, self.name, {
                "slug": protocol["slug"],
                "url": protocol.get("url"),
                "category": protocol.get("category"),
                "chains": protocol.get("chains") or [],
                "logo": protocol.get("logo"),
                "tvl": tvl,
                "change_1d": protocol.get("change_1d"),
                "change_7d": protocol.get("change_7d"),
                "change_1m": protocol.get("change_1m"),
                "matched_by": strategy,
            })
            session.commit()
            result.enriched += 1
            total_tvl += tvl

        result.extra.update({
            "near_protocol_count": len(protocols),
            "unmatched_protocols": len(protocols) - len(claims),
            "total_tvl": total_tvl,
        })
        return result
