"""Market risk classification — pure functions, no I/O."""
from __future__ import annotations

from dataclasses import dataclass

from .models import UtilizationRisk

HIGH_UTILIZATION = 80.0
MEDIUM_UTILIZATION = 50.0


@dataclass(frozen=True)
class RiskAssessment:
    is_healthy: bool
    utilization_risk: UtilizationRisk

    @property
    def is_safe_target(self) -> bool:
        """Both signals must pass before a market can receive funds."""
        return self.is_healthy and self.utilization_risk != UtilizationRisk.HIGH


def classify_utilization(utilization: float) -> UtilizationRisk:
    """Map a utilization percentage to a risk tier.

    > 80 → HIGH, (50, 80] → MEDIUM, <= 50 → LOW.
    """
    if utilization > HIGH_UTILIZATION:
        return UtilizationRisk.HIGH
    if utilization > MEDIUM_UTILIZATION:
        return UtilizationRisk.MEDIUM
    return UtilizationRisk.LOW


def is_market_healthy(total_borrow_assets: int, total_supply_assets: int) -> bool:
    return total_borrow_assets <= total_supply_assets


def classify(
    utilization: float, total_supply_assets: int, total_borrow_assets: int
) -> RiskAssessment:
    return RiskAssessment(
        is_healthy=is_market_healthy(total_borrow_assets, total_supply_assets),
        utilization_risk=classify_utilization(utilization),
    )
