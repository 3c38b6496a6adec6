"""Opportunity finder — picks a better market for a position and judges profitability.

The scan and the profit rule are pure; only gas estimation touches
collaborators, and its failures degrade the estimate instead of aborting.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence

from ..config import OptimizerConfig
from ..interfaces import ExecutionClient
from ..models import (
    GasEstimate,
    MarketSnapshot,
    OptimizationResult,
    Position,
    ProtocolAnalysis,
    ProtocolName,
)

logger = logging.getLogger(__name__)

# (cost in wei, loan token address) -> cost in loan-token native units
GasValuer = Callable[[int, str], Awaitable[float]]

MONTHS_PER_YEAR = 12


def monthly_profit(principal: int, current_apy: float, candidate_apy: float) -> float:
    """Simple-interest gain per month from moving ``principal``. APYs in percent."""
    return principal * (candidate_apy - current_apy) / 100 / MONTHS_PER_YEAR


def is_profitable(profit_per_month: float, gas_cost: float, payback_multiple: float = 3.0) -> bool:
    """Payback rule: one month of extra yield must cover the gas cost ``payback_multiple`` times."""
    return profit_per_month > gas_cost * payback_multiple


def _same_market(position: Position, snapshot: MarketSnapshot) -> bool:
    return (
        position.protocol == snapshot.protocol
        and position.market_id.lower() == snapshot.market_id.lower()
    )


def _same_asset(position: Position, snapshot: MarketSnapshot) -> bool:
    if not position.loan_token or not snapshot.loan_token:
        return True
    return position.loan_token.lower() == snapshot.loan_token.lower()


def select_candidate(
    position: Position, analyses: Sequence[ProtocolAnalysis]
) -> MarketSnapshot | None:
    """Highest total-APY safe market that strictly beats the position's APY.

    Markets are scanned in order; the first to reach a new maximum wins ties.
    The position's own market and markets lending a different token are
    never candidates.
    """
    best: MarketSnapshot | None = None
    best_apy = position.metrics.total_apy
    for analysis in analyses:
        for snapshot in analysis.markets:
            if not snapshot.is_safe_target:
                continue
            if _same_market(position, snapshot) or not _same_asset(position, snapshot):
                continue
            if snapshot.total_apy > best_apy:
                best = snapshot
                best_apy = snapshot.total_apy
    return best


class OpportunityFinder:
    """Evaluate one position against every analysed market."""

    def __init__(
        self,
        config: OptimizerConfig,
        executions: Mapping[ProtocolName, ExecutionClient],
        gas_valuer: GasValuer | None = None,
    ) -> None:
        self._config = config
        self._executions = dict(executions)
        self._gas_valuer = gas_valuer

    async def _simulate(
        self, leg: str, protocol: ProtocolName, market_id: str, amount: int, issues: list[str]
    ) -> int:
        execution = self._executions.get(protocol)
        if execution is None:
            issues.append(f"{leg}: no execution client for {protocol.value}")
            return 0
        try:
            if leg == "withdraw":
                result = await execution.simulate_withdraw(market_id, amount)
            else:
                result = await execution.simulate_supply(market_id, amount)
        except Exception as e:
            issues.append(f"{leg}: {e}")
            return 0
        if not result.success:
            issues.append(f"{leg}: {result.error or 'simulation failed'}")
            return 0
        return result.gas_estimate

    async def estimate_gas(self, position: Position, target: MarketSnapshot) -> GasEstimate:
        """Gas for withdraw + supply, valued in the position's loan token.

        A leg that cannot be simulated, a missing gas price or a failed
        valuation counts as zero cost and marks the estimate degraded.
        """
        issues: list[str] = []
        amount = position.supply_amount
        withdraw_gas = await self._simulate(
            "withdraw", position.protocol, position.market_id, amount, issues
        )
        supply_gas = await self._simulate("supply", target.protocol, target.market_id, amount, issues)

        gas_price = 0
        execution = self._executions.get(position.protocol)
        if execution is not None:
            try:
                gas_price = await execution.get_gas_price()
            except Exception as e:
                issues.append(f"gas price: {e}")
        else:
            issues.append(f"gas price: no execution client for {position.protocol.value}")

        cost_wei = (withdraw_gas + supply_gas) * gas_price
        cost_in_token = 0.0
        if cost_wei > 0:
            if self._gas_valuer is None:
                issues.append("valuation: no gas valuer configured")
            else:
                try:
                    cost_in_token = await self._gas_valuer(cost_wei, position.loan_token)
                except Exception as e:
                    issues.append(f"valuation: {e}")

        if issues:
            logger.warning(
                "Degraded gas estimate for %s %s: %s",
                position.protocol.value, position.market_id, "; ".join(issues),
            )
        return GasEstimate(
            withdraw_gas=withdraw_gas,
            supply_gas=supply_gas,
            gas_price=gas_price,
            cost_in_token=cost_in_token,
            degraded=bool(issues),
            issues=tuple(issues),
        )

    async def find_best_opportunity(
        self,
        position: Position,
        analyses: Sequence[ProtocolAnalysis],
        user_id: str = "",
        current_market: MarketSnapshot | None = None,
    ) -> OptimizationResult | None:
        """Best move for ``position``, or None when nothing clears the APY threshold."""
        if position.supply_amount <= 0:
            return None

        current_apy = position.metrics.total_apy
        candidate = select_candidate(position, analyses)
        if candidate is None:
            return None
        if candidate.total_apy - current_apy <= self._config.min_apy_delta:
            logger.debug(
                "Best candidate %s improves %s by %.3f%%, below %.3f%%",
                candidate.market_id, position.market_id,
                candidate.total_apy - current_apy, self._config.min_apy_delta,
            )
            return None

        gas = await self.estimate_gas(position, candidate)
        profit = monthly_profit(position.supply_amount, current_apy, candidate.total_apy)
        verdict = is_profitable(profit, gas.cost_in_token, self._config.payback_multiple)

        logger.info(
            "%s %s -> %s %s: %.2f%% -> %.2f%%, monthly %.2f vs gas %.2f (%s)",
            position.protocol.value, position.market_id,
            candidate.protocol.value, candidate.market_id,
            current_apy, candidate.total_apy, profit, gas.cost_in_token,
            "profitable" if verdict else "not profitable",
        )
        return OptimizationResult(
            current_position=position,
            suggested_market=candidate,
            current_apy=current_apy,
            potential_apy=candidate.total_apy,
            gas=gas,
            monthly_profit=profit,
            is_profit=verdict,
            user_id=user_id,
            current_market=current_market,
        )
