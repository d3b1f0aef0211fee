"""Gap score engine: how empty a category is relative to the demand for it.

Five weighted signals, each on a 0-100 scale:

- **Builder Gap** (0.30): few active projects means room to build.
- **Market Control** (0.20): Herfindahl concentration of TVL. A market owned
  by one protocol, or with no TVL at all, is open to a challenger.
- **Dev Momentum** (0.15): share of projects without recent commits.
- **NEAR Focus** (0.20): sponsor priority through the strategic multiplier.
- **Untapped Demand** (0.15): demand (capital, on-chain activity, sponsor
  floor) that the active projects are not yet serving.

``score`` is a pure function of :class:`CategoryStats`; the same input always
yields the same breakdown.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field

BUILDER_GAP_SATURATION = 10
DEMAND_SATURATION = 20
# log10 ranges mapped onto 0..100: $1B TVL and 1M transactions saturate
CAPITAL_LOG_RANGE = 9.0
ACTIVITY_LOG_RANGE = 6.0
STALE_CATEGORY_CAP = 20.0
NON_STRATEGIC_FOCUS = 20.0

WEIGHTS: dict[str, float] = {
    "Builder Gap": 0.30,
    "Market Control": 0.20,
    "Dev Momentum": 0.15,
    "NEAR Focus": 0.20,
    "Untapped Demand": 0.15,
}


@dataclass(frozen=True)
class CategoryStats:
    total_projects: int = 0
    active_projects: int = 0
    total_tvl: float = 0.0
    project_tvls: tuple[float, ...] = ()
    activity_volume: float = 0.0
    dev_active_projects: int = 0
    is_strategic: bool = False
    strategic_multiplier: float = 1.0


@dataclass(frozen=True)
class GapSignal:
    label: str
    value: float
    weight: float
    description: str

    @property
    def contribution(self) -> float:
        return self.value * self.weight


@dataclass(frozen=True)
class GapScoreBreakdown:
    signals: list[GapSignal] = field(default_factory=list)
    final_score: float = 0.0
    demand_level: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def herfindahl(values: tuple[float, ...] | list[float]) -> float:
    """Sum of squared market shares (0..1); 0 when there is nothing to share."""
    positive = [v for v in values if v > 0]
    total = sum(positive)
    if total <= 0:
        return 0.0
    return sum((v / total) ** 2 for v in positive)


def demand_level(stats: CategoryStats) -> float:
    capital = _clamp(math.log10(max(stats.total_tvl, 0) + 1) / CAPITAL_LOG_RANGE * 100)
    activity = _clamp(math.log10(max(stats.activity_volume, 0) + 1) / ACTIVITY_LOG_RANGE * 100)
    sponsor = _clamp(50 * (stats.strategic_multiplier - 1)) if stats.is_strategic else 0.0
    return max(capital, activity, sponsor)


def score(stats: CategoryStats) -> GapScoreBreakdown:
    active = max(stats.active_projects, 0)
    total = max(stats.total_projects, 0)
    demand = demand_level(stats)

    builder_gap = 100 * max(0.0, 1 - active / BUILDER_GAP_SATURATION)

    tvl_present = stats.total_tvl > 0 and any(v > 0 for v in stats.project_tvls)
    market_control = herfindahl(stats.project_tvls) * 100 if tvl_present else 100.0

    if total == 0:
        dev_momentum = 100.0
    else:
        dev_momentum = 100 * (1 - min(stats.dev_active_projects, total) / total)
        if demand == 0:
            # a stale category nobody wants is not an opportunity
            dev_momentum = min(dev_momentum, STALE_CATEGORY_CAP)

    near_focus = _clamp(50 * stats.strategic_multiplier) if stats.is_strategic else NON_STRATEGIC_FOCUS

    untapped = demand * (1 - min(active, DEMAND_SATURATION) / DEMAND_SATURATION)

    signals = [
        GapSignal("Builder Gap", round(builder_gap, 2), WEIGHTS["Builder Gap"],
                  f"{active} active project{'s' if active != 1 else ''} in this category"),
        GapSignal("Market Control", round(market_control, 2), WEIGHTS["Market Control"],
                  "No TVL yet, the market is uncontested" if not tvl_present
                  else "TVL concentration across existing projects (HHI)"),
        GapSignal("Dev Momentum", round(dev_momentum, 2), WEIGHTS["Dev Momentum"],
                  f"{min(stats.dev_active_projects, total)} of {total} projects shipped code recently"),
        GapSignal("NEAR Focus", round(near_focus, 2), WEIGHTS["NEAR Focus"],
                  f"Strategic priority (x{stats.strategic_multiplier:g})" if stats.is_strategic
                  else "Standard ecosystem category"),
        GapSignal("Untapped Demand", round(untapped, 2), WEIGHTS["Untapped Demand"],
                  f"Demand level {demand:.0f}/100 against current supply"),
    ]
    final = _clamp(sum(s.contribution for s in signals))
    return GapScoreBreakdown(signals=signals, final_score=round(final, 2), demand_level=round(demand, 2))
