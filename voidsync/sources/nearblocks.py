from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from sqlalchemy.orm import Session

from voidsync.matching import ResolverChain, near_account_resolver
from voidsync.models import Project
from voidsync.sources.base import AdapterResult, PerProjectAdapter, ProviderError
from voidsync.utils import to_number

log = logging.getLogger(__name__)


def parse_chain_stats(data: Any) -> dict[str, float]:
    """Normalize ``/v1/stats`` (``{"stats": [{...}]}`` or a bare object)."""
    stats = data
    if isinstance(data, dict) and isinstance(data.get("stats"), list) and data["stats"]:
        stats = data["stats"][0]
    if not isinstance(stats, dict):
        raise ProviderError("nearblocks", "stats payload is not an object")

    def pick(*keys: str) -> float:
        for key in keys:
            if stats.get(key) is not None:
                return to_number(stats[key])
        return 0.0

    return {
        "total_transactions": pick("total_txns", "totalTransactions"),
        "total_accounts": pick("total_accounts", "totalAccounts"),
        "block_height": pick("block_height", "blockHeight"),
        "nodes_online": pick("nodes_online", "nodesOnline"),
        "avg_block_time": pick("avg_block_time", "avgBlockTime"),
    }


class NearBlocksAdapter(PerProjectAdapter):
    """Chain statistics plus per-account transaction counts from NearBlocks."""

    name = "nearblocks"
    min_interval = 0.05

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        if self.settings.nearblocks_api_key:
            headers["Authorization"] = f"Bearer {self.settings.nearblocks_api_key}"
        return headers

    def resolver(self) -> ResolverChain:
        return near_account_resolver()

    async def prepare(self, session: Session, result: AdapterResult) -> bool:
        try:
            stats = parse_chain_stats(await self.get_json(f"{self.settings.nearblocks_url}/v1/stats"))
        except ProviderError as exc:
            log.warning("NearBlocks unavailable: %s", exc)
            result.status = "api_unavailable"
            result.error = str(exc)
            result.extra["chain_stats"] = None
            return False
        result.extra["chain_stats"] = stats
        return True

    async def fetch_fragment(self, identifier: str, project: Project) -> dict[str, Any]:
        data = await self.get_json(f"{self.settings.nearblocks_url}/v1/account/{quote(identifier)}/txns/count")
        txns = data.get("txns") if isinstance(data, dict) else None
        row = txns[0] if isinstance(txns, list) and txns else data
        count = to_number(row.get("count") if isinstance(row, dict) else None)
        return {"account_id": identifier, "txn_count": int(count)}
