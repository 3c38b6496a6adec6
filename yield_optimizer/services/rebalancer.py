"""Rebalance executor — withdraw from the current market, then supply to the target."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import replace

from ..interfaces import ExecutionClient
from ..models import (
    AlertLevel,
    OptimizationResult,
    ProtocolName,
    RebalanceOutcome,
    RebalanceStatus,
    TxResult,
)
from .events import Event, EventChannel, EventKind

logger = logging.getLogger(__name__)


class RebalanceExecutor:
    """Run the two write legs in strict order and report every failure.

    Nothing is retried here. The next optimization cycle re-reads on-chain
    state and decides again.

    The legs run in their own task, shielded from the caller: cancelling a
    scheduled cycle does not interrupt a move between withdraw and supply.
    ``drain`` waits for moves still in flight.
    """

    def __init__(
        self, executions: Mapping[ProtocolName, ExecutionClient], events: EventChannel
    ) -> None:
        self._executions = dict(executions)
        self._events = events
        self._in_flight: set[asyncio.Task[RebalanceOutcome]] = set()

    async def execute(self, user_id: str, optimization: OptimizationResult) -> bool:
        outcome = await self.rebalance(user_id, optimization)
        return outcome.succeeded

    def in_flight(self) -> int:
        return len(self._in_flight)

    async def drain(self) -> None:
        """Wait for every in-flight move to finish."""
        while self._in_flight:
            pending = list(self._in_flight)
            logger.info("Waiting for %d in-flight rebalance(s)", len(pending))
            for result in await asyncio.gather(*pending, return_exceptions=True):
                if isinstance(result, BaseException):
                    logger.error("In-flight rebalance ended abnormally: %r", result)

    async def _run_leg(
        self, leg: str, protocol: ProtocolName, market_id: str, amount: int
    ) -> TxResult:
        execution = self._executions.get(protocol)
        if execution is None:
            return TxResult(success=False, error=f"no execution client for {protocol.value}")
        try:
            if leg == "withdraw":
                return await execution.execute_withdraw(market_id, amount)
            return await execution.execute_supply(market_id, amount)
        except Exception as e:
            return TxResult(success=False, error=str(e))

    async def rebalance(self, user_id: str, optimization: OptimizationResult) -> RebalanceOutcome:
        position = optimization.current_position
        target = optimization.suggested_market
        if not optimization.is_profit or position is None or target is None:
            logger.info("Refusing rebalance for %s: verdict is not executable", user_id)
            return RebalanceOutcome(
                status=RebalanceStatus.REFUSED,
                user_id=user_id,
                detail="optimization is not profitable or has no target",
            )

        task = asyncio.create_task(self._move(user_id, optimization), name=f"rebalance:{user_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    async def _move(self, user_id: str, optimization: OptimizationResult) -> RebalanceOutcome:
        position = optimization.current_position
        target = optimization.suggested_market
        amount = position.supply_amount
        base = RebalanceOutcome(
            status=RebalanceStatus.REFUSED,
            user_id=user_id,
            amount=amount,
            source_protocol=position.protocol,
            source_market_id=position.market_id,
            target_protocol=target.protocol,
            target_market_id=target.market_id,
        )

        withdraw = await self._run_leg("withdraw", position.protocol, position.market_id, amount)
        if not withdraw.success:
            outcome = replace(
                base,
                status=RebalanceStatus.WITHDRAW_FAILED,
                failed_leg="withdraw",
                detail=withdraw.error,
            )
            logger.error(
                "Withdraw of %d from %s %s failed for %s: %s",
                amount, position.protocol.value, position.market_id, user_id, withdraw.error,
            )
            await self._events.publish(
                Event(
                    kind=EventKind.REBALANCE_FAILED,
                    level=AlertLevel.ERROR,
                    message=f"Rebalance aborted: withdraw failed ({withdraw.error})",
                    user_id=user_id,
                    payload=outcome.as_payload(),
                )
            )
            return outcome

        try:
            supply = await self._run_leg("supply", target.protocol, target.market_id, amount)
        except asyncio.CancelledError:
            await self._report_stranded(
                replace(base, withdraw_tx=withdraw.tx_hash),
                "supply cancelled before it completed",
            )
            raise
        if not supply.success:
            return await self._report_stranded(
                replace(base, withdraw_tx=withdraw.tx_hash), supply.error
            )

        outcome = replace(
            base,
            status=RebalanceStatus.COMPLETED,
            withdraw_tx=withdraw.tx_hash,
            supply_tx=supply.tx_hash,
        )
        await self._events.publish(
            Event(
                kind=EventKind.OPTIMIZATION_EXECUTED,
                level=AlertLevel.INFO,
                message=(
                    f"Moved {amount} from {position.protocol.value} to {target.protocol.value} "
                    f"({optimization.current_apy:.2f}% -> {optimization.potential_apy:.2f}%)"
                ),
                user_id=user_id,
                payload=outcome.as_payload(),
            )
        )
        return outcome

    async def _report_stranded(self, base: RebalanceOutcome, error: str) -> RebalanceOutcome:
        outcome = replace(
            base, status=RebalanceStatus.FUNDS_STRANDED, failed_leg="supply", detail=error
        )
        logger.critical(
            "Funds withdrawn but not redeposited: %d from %s %s for %s (supply to %s %s: %s)",
            outcome.amount, outcome.source_protocol.value, outcome.source_market_id,
            outcome.user_id, outcome.target_protocol.value, outcome.target_market_id, error,
        )
        await self._events.publish(
            Event(
                kind=EventKind.FUNDS_STRANDED,
                level=AlertLevel.CRITICAL,
                message="Funds withdrawn but not redeposited; manual follow-up required",
                user_id=outcome.user_id,
                payload=outcome.as_payload(),
            )
        )
        return outcome
