"""Pydantic response schemas for the voidsync API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class OpportunityOut(BaseModel):
    id: int
    title: str
    description: str
    reasoning: str
    category: str | None = None
    gap_score: int
    demand_score: float
    competition_level: str
    difficulty: str
    suggested_features: list[str] = []
    updated_at: str | None = None


class CategoryOut(BaseModel):
    id: int
    slug: str
    name: str
    description: str
    icon: str
    is_strategic: bool
    strategic_multiplier: float
    project_count: int = 0


class GapSignalOut(BaseModel):
    label: str
    value: float
    weight: float
    description: str


class CategoryGapOut(BaseModel):
    category: CategoryOut
    total_projects: int
    active_projects: int
    total_tvl: float
    competition_level: str
    signals: list[GapSignalOut]
    final_score: float
    demand_level: float


class SyncLogOut(BaseModel):
    id: int
    source: str
    status: str
    records_processed: int
    error_message: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class StatsOut(BaseModel):
    projects: int
    active_projects: int
    total_tvl: float
    categories: int
    opportunities: int
    by_provider: dict[str, int]
    last_sync: SyncLogOut | None = None


class SyncResponse(BaseModel):
    success: bool
    results: dict[str, dict[str, Any]] = {}
    skipped: bool = False
    reason: str | None = None


class SyncUsage(BaseModel):
    message: str
    usage: str
