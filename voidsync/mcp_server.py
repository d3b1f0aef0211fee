from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from voidsync import pipeline, services
from voidsync.db import init_db, session_scope

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def voidsync_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Voidsync",
    instructions=(
        "Voidsync tracks NEAR ecosystem projects and scores the gaps in each category. "
        "Start with get_stats() for an overview, then list_opportunities() for the best "
        "gaps, then get_category_gap(slug) to see why a category scores as it does."
    ),
    lifespan=voidsync_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("voidsync://overview")
def voidsync_overview() -> str:
    """Overview of Voidsync: data model, pipeline stages, and gap signals."""
    return json.dumps({
        "system": "Voidsync: NEAR ecosystem ingestion and gap scoring",
        "data_model": {
            "project": "One row per registry slug. raw_data holds one fragment per provider.",
            "category": "Fixed topical catalog. Strategic categories carry a multiplier.",
            "opportunity": "A buildable gap in a category, scored 0-100. Unique per category and title.",
            "sync_log": "One audit row per pipeline run: started, then completed or failed.",
        },
        "stages": list(pipeline.STAGE_NAMES),
        "gap_signals": {
            "Builder Gap": "Few active projects. Weight 0.30.",
            "Market Control": "TVL concentration (HHI). Weight 0.20.",
            "Dev Momentum": "Share of projects without recent commits. Weight 0.15.",
            "NEAR Focus": "Strategic priority. Weight 0.20.",
            "Untapped Demand": "Capital and activity not served by active projects. Weight 0.15.",
        },
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Project, category and opportunity counts plus the last completed sync."""
    with session_scope() as session:
        return services.compute_stats(session)


@mcp.tool()
def list_opportunities(category: str | None = None, limit: int = 20) -> list[dict]:
    """Best opportunities by gap score.

    Args:
        category: Optional category slug, e.g. "ai-agents".
        limit: Max results (default 20, max 200).
    """
    with session_scope() as session:
        return services.top_opportunities(session, category, max(1, min(limit, 200)))


@mcp.tool()
def get_category_gap(slug: str) -> dict:
    """Live gap score breakdown (all five signals) for one category."""
    with session_scope() as session:
        gap = services.category_gap(session, slug)
        return gap if gap is not None else {"error": f"Category {slug} not found"}


@mcp.tool()
def list_sync_logs(limit: int = 20) -> list[dict]:
    """Most recent pipeline runs, newest first."""
    with session_scope() as session:
        return services.recent_sync_logs(session, max(1, min(limit, 200)))


@mcp.tool()
async def run_manual_sync() -> dict:
    """Run one full sync pass now. Slow: calls every provider."""
    try:
        return await pipeline.run_sync("mcp")
    except Exception as exc:
        return {"success": False, "error": "Sync failed", "message": str(exc)}


def main():
    """Run the Voidsync MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
