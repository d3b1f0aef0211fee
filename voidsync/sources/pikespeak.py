from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from sqlalchemy.orm import Session

from voidsync.matching import ResolverChain, near_account_resolver
from voidsync.models import Project
from voidsync.sources.base import AdapterResult, PerProjectAdapter, ProviderError

log = logging.getLogger(__name__)


class PikespeakAdapter(PerProjectAdapter):
    """Account balances from Pikespeak. Needs ``PIKESPEAK_API_KEY``."""

    name = "pikespeak"
    min_interval = 0.1

    def headers(self) -> dict[str, str]:
        return {**super().headers(), "x-api-key": self.settings.pikespeak_api_key}

    def resolver(self) -> ResolverChain:
        return near_account_resolver()

    async def prepare(self, session: Session, result: AdapterResult) -> bool:
        if not self.settings.pikespeak_api_key:
            result.status = "not_configured"
            result.error = "PIKESPEAK_API_KEY not configured"
            return False
        try:
            wallets = await self.get_json(f"{self.settings.pikespeak_url}/hot-wallets/near")
            result.extra["hot_wallets"] = len(wallets) if isinstance(wallets, list) else 0
        except ProviderError as exc:
            # hot wallets are supplementary; balances can still be fetched
            log.warning("Pikespeak hot wallets unavailable: %s", exc)
            result.extra["hot_wallets"] = 0
        return True

    async def fetch_fragment(self, identifier: str, project: Project) -> dict[str, Any]:
        balance = await self.get_json(f"{self.settings.pikespeak_url}/account/balance/{quote(identifier)}")
        return {"account_id": identifier, "balance": balance}
