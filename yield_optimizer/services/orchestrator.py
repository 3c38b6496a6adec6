"""Orchestrator — drives monitoring, optimization sweeps and deposit detection."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from enum import Enum

from ..config import AppConfig
from ..errors import MarketDataError, UnknownMarketError
from ..interfaces import ExecutionClient, MarketSource, WalletProvider
from ..models import (
    AlertLevel,
    Err,
    FailureReason,
    Ok,
    OptimizationResult,
    PortfolioStatus,
    Position,
    ProtocolAnalysis,
    ProtocolName,
    Result,
    WalletStatus,
)
from .events import Event, EventChannel, EventKind
from .gas import GasQuoter
from .market_cache import MarketSnapshotCache
from .opportunity import OpportunityFinder
from .position_reader import PositionReader, build_portfolio
from .rebalancer import RebalanceExecutor
from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    STOPPED = "stopped"
    INITIALIZING = "initializing"
    RUNNING = "running"


def _format_hf(health_factor: float) -> str:
    return "∞" if health_factor == float("inf") else f"{health_factor:.2f}"


class Orchestrator:
    """Owns the cache, the decision services and every periodic loop.

    All collaborators are injected; ``build_orchestrator`` wires the real ones.
    """

    def __init__(
        self,
        config: AppConfig,
        sources: Mapping[ProtocolName, MarketSource],
        executions: Mapping[ProtocolName, ExecutionClient],
        wallets: WalletProvider,
        events: EventChannel,
        scheduler: Scheduler,
        cache: MarketSnapshotCache | None = None,
        gas_quoter: GasQuoter | None = None,
    ) -> None:
        self._config = config
        self._sources = dict(sources)
        self._wallets = wallets
        self._events = events
        self._scheduler = scheduler
        self._gas_quoter = gas_quoter

        if cache is None:
            cache = MarketSnapshotCache(self._sources, config.cache)
        self._cache = cache
        self._reader = PositionReader(self._sources, self._cache)
        self._finder = OpportunityFinder(
            config.optimizer,
            executions,
            gas_valuer=gas_quoter.to_token_units if gas_quoter else None,
        )
        self._executor = RebalanceExecutor(executions, events)

        self._state = OrchestratorState.STOPPED
        self._loop_handles: list[TimerHandle] = []
        self._deposit_watches: dict[str, TimerHandle] = {}
        self._last_balances: dict[str, int] = {}
        self._user_locks: dict[str, asyncio.Lock] = {}

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def cache(self) -> MarketSnapshotCache:
        return self._cache

    @property
    def events(self) -> EventChannel:
        return self._events

    def watched_users(self) -> tuple[str, ...]:
        return tuple(self._deposit_watches)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._state != OrchestratorState.STOPPED:
            logger.warning("Orchestrator already %s", self._state.value)
            return

        self._state = OrchestratorState.INITIALIZING
        sched = self._config.scheduler
        self._loop_handles = [
            self._scheduler.every("monitor", sched.monitor_interval_seconds, self.monitor_wallets),
            self._scheduler.every("optimize", sched.optimize_interval_seconds, self._optimize_all),
        ]
        for wallet in self._config.wallets:
            if wallet.deposit_token:
                self.watch_deposits(wallet.user_id)

        self._state = OrchestratorState.RUNNING
        logger.info(
            "Orchestrator running: monitor every %.0fs, optimize every %.0fs, %d deposit watch(es)",
            sched.monitor_interval_seconds,
            sched.optimize_interval_seconds,
            len(self._deposit_watches),
        )
        await self._events.publish(
            Event(kind=EventKind.LIFECYCLE, level=AlertLevel.INFO, message="Optimizer started")
        )

    async def stop(self) -> None:
        """Cancel every timer, let in-flight rebalances finish and clear in-memory state.

        Safe to call repeatedly.
        """
        if self._state == OrchestratorState.STOPPED:
            logger.debug("Orchestrator already stopped")
            return

        self._scheduler.cancel_all()
        await self._executor.drain()
        self._loop_handles.clear()
        self._deposit_watches.clear()
        self._last_balances.clear()
        self._user_locks.clear()
        self._cache.clear()
        self._state = OrchestratorState.STOPPED
        logger.info("Orchestrator stopped")
        await self._events.publish(
            Event(kind=EventKind.LIFECYCLE, level=AlertLevel.INFO, message="Optimizer stopped")
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _protocols_for(self, user_id: str) -> list[ProtocolName]:
        configured: Iterable[str] = ()
        for wallet in self._config.wallets:
            if wallet.user_id == user_id:
                configured = wallet.protocols
                break
        protocols = [p for p in self._sources if p.value in configured]
        return protocols or list(self._sources)

    async def _collect_analyses(self) -> tuple[ProtocolAnalysis, ...]:
        return tuple(
            await asyncio.gather(*(self._cache.get_all(protocol) for protocol in self._sources))
        )

    async def _read_positions(self, user_id: str, address: str) -> list[Position]:
        positions: list[Position] = []
        for protocol in self._protocols_for(user_id):
            try:
                positions.extend(await self._reader.check_position(address, protocol))
            except Exception as e:
                logger.warning("Could not read %s positions for %s: %s", protocol.value, user_id, e)
        return positions

    # ------------------------------------------------------------------
    # Direct operations
    # ------------------------------------------------------------------

    async def analyze_markets(self) -> tuple[ProtocolAnalysis, ...]:
        """Snapshot every configured market of every protocol."""
        analyses = await self._collect_analyses()
        for analysis in analyses:
            total_failure = not analysis.markets and bool(analysis.failed_market_ids)
            await self._events.publish(
                Event(
                    kind=EventKind.MARKET_ANALYSIS,
                    level=AlertLevel.ERROR if total_failure else AlertLevel.INFO,
                    message=(
                        f"{analysis.protocol.value}: could not load any market"
                        if total_failure
                        else f"{analysis.protocol.value}: {len(analysis.markets)} market(s) analysed"
                    ),
                    payload={
                        "protocol": analysis.protocol.value,
                        "markets": len(analysis.markets),
                        "failed": ", ".join(analysis.failed_market_ids),
                    },
                )
            )
        return analyses

    async def check_position(
        self,
        user_id: str,
        protocol: ProtocolName | None = None,
        market_id: str | None = None,
    ) -> Result[tuple[Position, ...]]:
        address = self._wallets.get_address(user_id)
        if address is None:
            return Err(FailureReason.WALLET_NOT_FOUND, f"No wallet found for user {user_id}")

        if protocol is not None:
            protocols = [protocol]
        elif market_id is not None:
            wanted = market_id.lower()
            protocols = [
                p for p, source in self._sources.items()
                if wanted in (m.lower() for m in source.market_ids())
            ]
            if not protocols:
                return Err(FailureReason.UNKNOWN_MARKET, f"Unknown market: {market_id}")
        else:
            protocols = self._protocols_for(user_id)

        positions: list[Position] = []
        for proto in protocols:
            try:
                positions.extend(await self._reader.check_position(address, proto, market_id))
            except UnknownMarketError as e:
                return Err(FailureReason.UNKNOWN_MARKET, str(e))
            except MarketDataError as e:
                return Err(FailureReason.MARKET_DATA, str(e))
            except Exception as e:
                logger.warning("Position read failed on %s for %s: %s", proto.value, user_id, e)
                return Err(FailureReason.MARKET_DATA, f"{type(e).__name__}: {e}")
        return Ok(tuple(positions))

    async def portfolio(self, user_id: str) -> Result[PortfolioStatus]:
        address = self._wallets.get_address(user_id)
        if address is None:
            return Err(FailureReason.WALLET_NOT_FOUND, f"No wallet found for user {user_id}")

        positions = await self._read_positions(user_id, address)
        usd_value = None
        if self._gas_quoter is not None and positions:
            try:
                usd_value = await self._gas_quoter.usd_valuer()
            except Exception as e:
                logger.warning("USD valuation unavailable: %s", e)
        return Ok(build_portfolio(positions, usd_value))

    async def check_wallet_status(self, user_id: str) -> WalletStatus:
        result = await self.portfolio(user_id)
        if not isinstance(result, Ok):
            return WalletStatus(needs_attention=True, level=AlertLevel.ERROR, message=result.detail)

        status = result.value
        threshold = self._config.optimizer.health_factor_warning
        if status.health_factor < threshold:
            return WalletStatus(
                needs_attention=True,
                level=AlertLevel.WARNING,
                message=(
                    f"Health factor {_format_hf(status.health_factor)} is below {threshold:.2f}"
                ),
                portfolio=status,
            )
        return WalletStatus(
            needs_attention=False,
            level=AlertLevel.INFO,
            message=f"Health factor {_format_hf(status.health_factor)}",
            portfolio=status,
        )

    async def monitor_wallets(self) -> list[WalletStatus]:
        """Check every known wallet and alert on the ones needing attention."""
        statuses: list[WalletStatus] = []
        for user_id in self._wallets.user_ids():
            try:
                status = await self.check_wallet_status(user_id)
            except Exception as e:
                logger.error("Monitoring failed for %s: %s", user_id, e)
                continue
            statuses.append(status)
            if status.needs_attention:
                await self._events.publish(
                    Event(
                        kind=EventKind.ALERT,
                        level=status.level,
                        message=status.message,
                        user_id=user_id,
                    )
                )
        return statuses

    async def optimize(self, user_ids: Iterable[str] | None = None) -> list[OptimizationResult]:
        """Evaluate (and, if enabled, execute) the best move for each position.

        A user whose previous pass is still running is skipped.
        """
        targets = list(user_ids) if user_ids is not None else list(self._wallets.user_ids())
        analyses = await self._collect_analyses()

        results: list[OptimizationResult] = []
        for user_id in targets:
            lock = self._user_locks.setdefault(user_id, asyncio.Lock())
            if lock.locked():
                logger.info("Optimization already running for %s, skipping", user_id)
                continue
            async with lock:
                try:
                    results.extend(await self._optimize_user(user_id, analyses))
                except Exception as e:
                    logger.error("Optimization failed for %s: %s", user_id, e)
        return results

    async def _optimize_all(self) -> None:
        await self.optimize()

    async def _optimize_user(
        self, user_id: str, analyses: tuple[ProtocolAnalysis, ...]
    ) -> list[OptimizationResult]:
        address = self._wallets.get_address(user_id)
        if address is None:
            await self._events.publish(
                Event(
                    kind=EventKind.ALERT,
                    level=AlertLevel.ERROR,
                    message="No wallet found; optimization skipped",
                    user_id=user_id,
                )
            )
            return []

        results: list[OptimizationResult] = []
        for position in await self._read_positions(user_id, address):
            current_market = self._cache.peek(position.protocol, position.market_id)
            result = await self._finder.find_best_opportunity(
                position, analyses, user_id=user_id, current_market=current_market
            )
            if result is None:
                continue
            results.append(result)
            await self._report_opportunity(result)

            if result.is_profit:
                await self._maybe_execute(user_id, result)
        return results

    async def _report_opportunity(self, result: OptimizationResult) -> None:
        target = result.suggested_market
        if target is None:
            return
        await self._events.publish(
            Event(
                kind=EventKind.OPTIMIZATION_FOUND,
                level=AlertLevel.INFO,
                message=(
                    f"{result.current_position.protocol.value} {result.current_apy:.2f}% -> "
                    f"{target.protocol.value} {target.name or target.market_id} "
                    f"{result.potential_apy:.2f}%"
                ),
                user_id=result.user_id,
                payload={
                    "source_market_id": result.current_position.market_id,
                    "target_market_id": target.market_id,
                    "apy_delta": round(result.apy_delta, 4),
                    "monthly_profit": round(result.monthly_profit, 4),
                    "gas_cost_wei": str(result.gas_cost),
                    "gas_cost_in_token": round(result.gas.cost_in_token, 4),
                    "gas_degraded": result.gas.degraded,
                    "is_profit": result.is_profit,
                },
            )
        )

    async def _maybe_execute(self, user_id: str, result: OptimizationResult) -> None:
        optimizer = self._config.optimizer
        if not optimizer.auto_execute:
            logger.info("Auto-execution disabled; not rebalancing %s", user_id)
            return
        if result.gas.degraded and not optimizer.execute_on_degraded_gas:
            logger.warning(
                "Not rebalancing %s on a degraded gas estimate: %s",
                user_id, "; ".join(result.gas.issues),
            )
            return
        await self._executor.rebalance(user_id, result)

    # ------------------------------------------------------------------
    # Deposit detection
    # ------------------------------------------------------------------

    def watch_deposits(self, user_id: str) -> TimerHandle | None:
        """Poll the user's balance until it increases, then optimize once and stop."""
        if user_id in self._deposit_watches:
            return self._deposit_watches[user_id]
        if self._state == OrchestratorState.STOPPED:
            logger.warning("Cannot watch deposits for %s while stopped", user_id)
            return None

        async def poll() -> None:
            await self._poll_deposit(user_id)

        handle = self._scheduler.every(
            f"deposits:{user_id}", self._config.scheduler.deposit_poll_seconds, poll
        )
        self._deposit_watches[user_id] = handle
        logger.info("Watching deposits for %s", user_id)
        return handle

    def stop_watching(self, user_id: str) -> None:
        handle = self._deposit_watches.pop(user_id, None)
        self._last_balances.pop(user_id, None)
        if handle is not None:
            self._scheduler.cancel(handle)

    async def _poll_deposit(self, user_id: str) -> None:
        try:
            balance = await self._wallets.get_balance(user_id)
        except Exception as e:
            logger.warning("Balance check failed for %s: %s", user_id, e)
            return

        previous = self._last_balances.get(user_id)
        self._last_balances[user_id] = balance
        if previous is None or balance <= previous:
            return

        logger.info("Deposit detected for %s: %d -> %d", user_id, previous, balance)
        # Cancel first so a slow optimization pass cannot fire the watch again.
        self.stop_watching(user_id)
        await self._events.publish(
            Event(
                kind=EventKind.DEPOSIT_DETECTED,
                level=AlertLevel.INFO,
                message=f"Deposit of {balance - previous} detected",
                user_id=user_id,
                payload={"previous_balance": str(previous), "balance": str(balance)},
            )
        )
        await self.optimize([user_id])
