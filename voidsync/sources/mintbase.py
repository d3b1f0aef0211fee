from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from voidsync.matching import FragmentField, KnownMapping, ListingMatch, ResolverChain
from voidsync.models import Project
from voidsync.sources.base import AdapterResult, PerProjectAdapter, ProviderError
from voidsync.store import projects_in_category

log = logging.getLogger(__name__)

CATEGORY = "nfts"

KNOWN_STORES: dict[str, str] = {
    "paras": "x.paras.near",
    "mintbase": "mintbase1.near",
}

ECOSYSTEM_QUERY = """
query EcosystemStats {
  nft_contracts_aggregate { aggregate { count } }
  nft_listings_aggregate(where: { unlisted_at: { _is_null: true } }) { aggregate { count } }
  nft_tokens_aggregate(where: { burned_timestamp: { _is_null: true } }) { aggregate { count } }
}
"""

STORES_QUERY = """
query Stores {
  nft_contracts(limit: 100, order_by: { id: asc }) { id name owner }
}
"""

STORE_COUNTS_QUERY = """
query StoreCounts($id: String!) {
  minted: nft_tokens_aggregate(
    where: { nft_contract_id: { _eq: $id }, burned_timestamp: { _is_null: true } }
  ) { aggregate { count } }
  listed: nft_listings_aggregate(
    where: { nft_contract_id: { _eq: $id }, unlisted_at: { _is_null: true } }
  ) { aggregate { count } }
}
"""


def _count(data: dict[str, Any], key: str) -> int:
    return int(((data.get(key) or {}).get("aggregate") or {}).get("count") or 0)


class MintbaseAdapter(PerProjectAdapter):
    """NFT store activity from the Mintbase GraphQL indexer, for the ``nfts`` category."""

    name = "mintbase"
    min_interval = 0.03

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.stores: dict[str, dict[str, Any]] = {}
        self.ecosystem_stats: dict[str, int] = {}

    def headers(self) -> dict[str, str]:
        headers = {**super().headers(), "Content-Type": "application/json"}
        if self.settings.mintbase_api_key:
            headers["mb-api-key"] = self.settings.mintbase_api_key
        return headers

    async def query(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.graphql(self.settings.mintbase_graphql_url, query, variables)

    async def prepare(self, session: Session, result: AdapterResult) -> bool:
        try:
            data = await self.query(ECOSYSTEM_QUERY)
        except ProviderError as exc:
            log.warning("Mintbase unavailable: %s", exc)
            result.status = "api_unavailable"
            result.error = str(exc)
            return False
        self.ecosystem_stats = {
            "total_stores": _count(data, "nft_contracts_aggregate"),
            "active_listings": _count(data, "nft_listings_aggregate"),
            "total_tokens": _count(data, "nft_tokens_aggregate"),
        }
        result.extra["ecosystem_stats"] = self.ecosystem_stats

        try:
            stores = (await self.query(STORES_QUERY)).get("nft_contracts") or []
        except ProviderError as exc:
            # without the listing only remembered or known stores resolve
            log.warning("Mintbase store listing unavailable: %s", exc)
            stores = []
        self.stores = {s["id"]: s for s in stores if isinstance(s, dict) and s.get("id")}
        return True

    def candidates(self, session: Session) -> list[Project] | None:
        return projects_in_category(session, CATEGORY)

    def resolver(self) -> ResolverChain:
        return ResolverChain([
            FragmentField(self.name, ["store_id"]),
            KnownMapping(KNOWN_STORES),
            ListingMatch(
                self.stores.values(),
                names=lambda s: (s.get("name") or "", s["id"]),
                identifier=lambda s: s["id"],
            ),
        ])

    async def fetch_fragment(self, identifier: str, project: Project) -> dict[str, Any]:
        counts = await self.query(STORE_COUNTS_QUERY, {"id": identifier})
        store = self.stores.get(identifier, {})
        return {
            "store_id": identifier,
            "store_name": store.get("name"),
            "owner": store.get("owner"),
            "minted_count": _count(counts, "minted"),
            "listed_count": _count(counts, "listed"),
            "ecosystem_total_stores": self.ecosystem_stats.get("total_stores", 0),
            "ecosystem_active_listings": self.ecosystem_stats.get("active_listings", 0),
            "ecosystem_total_tokens": self.ecosystem_stats.get("total_tokens", 0),
        }
