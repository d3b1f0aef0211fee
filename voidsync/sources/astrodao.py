"""Sputnik DAO governance data read straight from NEAR contracts over JSON-RPC."""
from __future__ import annotations

import base64
import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from voidsync.matching import KNOWN_DAO_CONTRACTS, FragmentField, KnownMapping, ResolverChain, SlugPattern
from voidsync.models import Project
from voidsync.sources.base import AdapterResult, PerProjectAdapter, ProviderError
from voidsync.store import projects_in_category

log = logging.getLogger(__name__)

CATEGORY = "daos"

# RPC error causes meaning "no such DAO here", as opposed to a broken provider.
MISSING_CONTRACT_CAUSES = frozenset({"UNKNOWN_ACCOUNT", "NO_CONTRACT_CODE", "CONTRACT_EXECUTION_ERROR"})


def decode_view_result(raw: Any) -> Any:
    """Decode a ``call_function`` byte array into JSON; ``None`` if it is not JSON."""
    if not isinstance(raw, list) or not raw:
        return None
    try:
        return json.loads(bytes(raw).decode("utf-8"))
    except (ValueError, TypeError):
        return None


def count_members(policy: dict[str, Any]) -> int:
    members: set[str] = set()
    for role in policy.get("roles") or []:
        kind = role.get("kind") if isinstance(role, dict) else None
        if isinstance(kind, dict) and isinstance(kind.get("Group"), list):
            members.update(kind["Group"])
    return len(members)


class AstroDaoAdapter(PerProjectAdapter):
    name = "astrodao"
    min_interval = 0.1

    async def rpc(self, method: str, params: Any) -> Any:
        body = await self.post_json(
            self.settings.near_rpc_url,
            {"jsonrpc": "2.0", "id": "voidsync", "method": method, "params": params},
        )
        if not isinstance(body, dict):
            raise ProviderError(self.name, "RPC response is not an object")
        if body.get("error"):
            error = body["error"]
            cause = ((error.get("cause") or {}).get("name") if isinstance(error, dict) else None) or ""
            raise ProviderError(self.name, f"RPC error {cause or error}")
        return body.get("result")

    async def view(self, contract_id: str, method_name: str, args: dict[str, Any] | None = None) -> Any:
        """Call a view method; ``None`` when the contract or method does not exist."""
        params = {
            "request_type": "call_function",
            "finality": "final",
            "account_id": contract_id,
            "method_name": method_name,
            "args_base64": base64.b64encode(json.dumps(args or {}).encode()).decode(),
        }
        try:
            result = await self.rpc("query", params)
        except ProviderError as exc:
            if any(cause in str(exc) for cause in MISSING_CONTRACT_CAUSES):
                return None
            raise
        if not isinstance(result, dict) or result.get("error"):
            return None
        return decode_view_result(result.get("result"))

    async def prepare(self, session: Session, result: AdapterResult) -> bool:
        try:
            status = await self.rpc("status", [])
        except ProviderError as exc:
            log.warning("NEAR RPC unavailable: %s", exc)
            result.status = "api_unavailable"
            result.error = str(exc)
            return False
        sync_info = (status or {}).get("sync_info") or {}
        result.extra["block_height"] = sync_info.get("latest_block_height")
        return True

    def candidates(self, session: Session) -> list[Project] | None:
        return projects_in_category(session, CATEGORY)

    def resolver(self) -> ResolverChain:
        return ResolverChain([
            FragmentField(self.name, ["contract_id"]),
            FragmentField("ecosystem", ["daoContractId"]),
            FragmentField("ecosystem", ["contract"], accept=lambda v: "sputnik-dao.near" in v),
            KnownMapping(KNOWN_DAO_CONTRACTS),
            SlugPattern("{slug}.sputnik-dao.near"),
        ])

    async def fetch_fragment(self, identifier: str, project: Project) -> dict[str, Any] | None:
        policy = await self.view(identifier, "get_policy")
        if not isinstance(policy, dict):
            return None
        last_proposal_id = await self.view(identifier, "get_last_proposal_id")
        roles = [r for r in policy.get("roles") or [] if isinstance(r, dict)]
        return {
            "contract_id": identifier,
            "member_count": count_members(policy),
            "role_count": len(roles),
            "proposal_count": last_proposal_id if isinstance(last_proposal_id, int) else 0,
            "proposal_bond": policy.get("proposal_bond"),
            "bounty_bond": policy.get("bounty_bond"),
            "roles": [r.get("name") for r in roles],
        }
