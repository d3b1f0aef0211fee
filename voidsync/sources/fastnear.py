from __future__ import annotations

from typing import Any
from urllib.parse import quote

from voidsync.matching import ResolverChain, near_account_resolver
from voidsync.models import Project
from voidsync.sources.base import PerProjectAdapter, ProviderError
from voidsync.utils import to_number

YOCTO_PER_NEAR = 10**24


class FastNearAdapter(PerProjectAdapter):
    """Account balance, storage and holdings from the FastNEAR ``/full`` endpoint."""

    name = "fastnear"
    min_interval = 0.03

    def resolver(self) -> ResolverChain:
        return near_account_resolver()

    async def fetch_fragment(self, identifier: str, project: Project) -> dict[str, Any]:
        data = await self.get_json(f"{self.settings.fastnear_url}/v1/account/{quote(identifier)}/full")
        if not isinstance(data, dict):
            raise ProviderError(self.name, f"account {identifier} payload is not an object")
        state = data.get("state") or {}
        balance = state.get("balance")
        return {
            "account_id": identifier,
            "balance_near": to_number(balance) / YOCTO_PER_NEAR if balance else None,
            "storage_bytes": int(to_number(state.get("storage_bytes"))),
            "ft_count": len(data.get("tokens") or []),
            "nft_count": len(data.get("nfts") or []),
            "staking_pools": len(data.get("pools") or []),
        }
