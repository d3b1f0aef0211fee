from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    return [item.strip() for item in _env(name).split(",") if item.strip()]


def _default_database_url() -> str:
    override = _env("VOIDSYNC_DATABASE_URL")
    if override:
        return override
    return f"sqlite:///{Path(__file__).parent / 'data' / 'voidsync.db'}"


class Settings(BaseModel):
    database_url: str = Field(default_factory=_default_database_url)

    user_agent: str = "VoidsyncBot/1.0 (+https://voidspace.io)"
    request_timeout_seconds: float = Field(default_factory=lambda: _env_float("PROVIDER_TIMEOUT_SECONDS", 10.0))

    # Provider credentials
    github_token: str = Field(default_factory=lambda: _env("GITHUB_TOKEN"))
    nearblocks_api_key: str = Field(default_factory=lambda: _env("NEARBLOCKS_API_KEY"))
    pikespeak_api_key: str = Field(default_factory=lambda: _env("PIKESPEAK_API_KEY"))
    mintbase_api_key: str = Field(default_factory=lambda: _env("MINTBASE_API_KEY"))

    # Provider endpoints
    ecosystem_url: str = "https://raw.githubusercontent.com/near/ecosystem/main/entities.json"
    defillama_url: str = "https://api.llama.fi"
    github_api_url: str = "https://api.github.com"
    nearblocks_url: str = "https://api.nearblocks.io"
    fastnear_url: str = "https://api.fastnear.com"
    pikespeak_url: str = "https://api.pikespeak.ai"
    mintbase_graphql_url: str = "https://graph.mintbase.xyz/mainnet"
    near_rpc_url: str = Field(default_factory=lambda: _env("NEAR_RPC_URL", "https://rpc.mainnet.near.org"))

    # Trigger auth
    cron_secret: str = Field(default_factory=lambda: _env("CRON_SECRET"))
    cron_trusted_user_agent: str = "vercel-cron"
    sync_api_key: str = Field(default_factory=lambda: _env("SYNC_API_KEY"))

    # Orchestration
    budget_seconds: float = Field(default_factory=lambda: _env_float("SYNC_BUDGET_SECONDS", 55.0))
    lock_ttl_seconds: float = Field(default_factory=lambda: _env_float("SYNC_LOCK_TTL_SECONDS", 600.0))
    stage_order: list[str] = Field(default_factory=lambda: _env_list("SYNC_STAGE_ORDER"))
    disabled_stages: set[str] = Field(default_factory=lambda: set(_env_list("SYNC_DISABLED_STAGES")))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
