"""Integration tests for the orchestrator with fake collaborators and a manual scheduler."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import aiohttp
import pytest

from conftest import (
    MORPHO_MARKET_A,
    MORPHO_MARKET_B,
    USDC,
    WALLET_ADDRESS,
    FakeExecution,
    FakeMarketSource,
    FakeScheduler,
    FakeWallets,
    make_raw_market,
)
from yield_optimizer.config import AppConfig, OptimizerConfig, SchedulerConfig
from yield_optimizer.errors import MarketDataError
from yield_optimizer.models import (
    AlertLevel,
    Err,
    FailureReason,
    Ok,
    ProtocolName,
    RawPosition,
    TxResult,
)
from yield_optimizer.services.events import EventChannel, EventKind
from yield_optimizer.services.gas import GasQuoter
from yield_optimizer.services.orchestrator import Orchestrator, OrchestratorState
from yield_optimizer.services.scheduler import AsyncioScheduler, Scheduler

PRINCIPAL = 10_000_000_000  # 10,000 USDC


def _sources(
    supply: int = PRINCIPAL, borrow: int = 0
) -> dict[ProtocolName, FakeMarketSource]:
    morpho = FakeMarketSource(
        ProtocolName.MORPHO,
        {
            MORPHO_MARKET_A: make_raw_market(MORPHO_MARKET_A, supply_apy=5.0),
            MORPHO_MARKET_B: make_raw_market(MORPHO_MARKET_B, supply_apy=7.0, name="WETH-USDC"),
        },
        positions={MORPHO_MARKET_A: RawPosition(supply_assets=supply, borrow_assets=borrow)},
    )
    aave = FakeMarketSource(
        ProtocolName.AAVE, {USDC: make_raw_market(USDC, supply_apy=4.0, name="USDC")}
    )
    return {ProtocolName.MORPHO: morpho, ProtocolName.AAVE: aave}


def _gas_quoter(config: AppConfig) -> GasQuoter:
    oracle = AsyncMock()
    oracle.fetch_prices = AsyncMock(return_value={"ETH": 3000.0, "USDC": 1.0})
    return GasQuoter(config, oracle)


class Harness:
    def __init__(
        self,
        config: AppConfig,
        sources: dict[ProtocolName, FakeMarketSource] | None = None,
        wallets: FakeWallets | None = None,
        with_gas_quoter: bool = True,
        scheduler: Scheduler | None = None,
        morpho_exec: FakeExecution | None = None,
    ) -> None:
        self.sources = sources or _sources()
        self.morpho_exec = morpho_exec or FakeExecution()
        self.aave_exec = FakeExecution()
        self.wallets = wallets or FakeWallets({"alice": WALLET_ADDRESS})
        self.events = EventChannel()
        self.scheduler = scheduler or FakeScheduler()
        self.orchestrator = Orchestrator(
            config=config,
            sources=self.sources,
            executions={
                ProtocolName.MORPHO: self.morpho_exec,
                ProtocolName.AAVE: self.aave_exec,
            },
            wallets=self.wallets,
            events=self.events,
            scheduler=self.scheduler,
            gas_quoter=_gas_quoter(config) if with_gas_quoter else None,
        )

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events.events]


def _with_optimizer(config: AppConfig, **overrides) -> AppConfig:
    return replace(config, optimizer=replace(OptimizerConfig(), **overrides))


class SlowSupplyExecution(FakeExecution):
    """Signals when the supply leg starts, then takes a while to confirm."""

    def __init__(self, delay: float = 0.05) -> None:
        super().__init__()
        self.delay = delay
        self.supply_started = asyncio.Event()

    async def execute_supply(self, market_id: str, amount: int) -> TxResult:
        self.supply_started.set()
        await asyncio.sleep(self.delay)
        return await super().execute_supply(market_id, amount)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_registers_loops_and_deposit_watch(
        self, sample_app_config: AppConfig
    ) -> None:
        h = Harness(sample_app_config)

        await h.orchestrator.start()

        assert h.orchestrator.state is OrchestratorState.RUNNING
        assert sorted(h.scheduler.names()) == ["deposits:alice", "monitor", "optimize"]
        assert h.orchestrator.watched_users() == ("alice",)
        assert h.kinds() == [EventKind.LIFECYCLE]

    @pytest.mark.asyncio
    async def test_start_twice_does_not_duplicate_timers(
        self, sample_app_config: AppConfig
    ) -> None:
        h = Harness(sample_app_config)
        await h.orchestrator.start()
        await h.orchestrator.start()
        assert h.scheduler.outstanding() == 3

    @pytest.mark.asyncio
    async def test_stop_is_idempotent_and_leaves_no_timers(
        self, sample_app_config: AppConfig
    ) -> None:
        h = Harness(sample_app_config)
        await h.orchestrator.start()
        await h.orchestrator.analyze_markets()
        assert len(h.orchestrator.cache) > 0

        await h.orchestrator.stop()
        await h.orchestrator.stop()

        assert h.orchestrator.state is OrchestratorState.STOPPED
        assert h.scheduler.outstanding() == 0
        assert h.orchestrator.watched_users() == ()
        assert len(h.orchestrator.cache) == 0
        stopped = [e for e in h.events.of_kind(EventKind.LIFECYCLE) if "stopped" in e.message]
        assert len(stopped) == 1

    @pytest.mark.asyncio
    async def test_stop_clears_user_locks(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)
        await h.orchestrator.start()
        await h.orchestrator.optimize(["alice"])
        assert "alice" in h.orchestrator._user_locks

        await h.orchestrator.stop()

        assert h.orchestrator._user_locks == {}

    @pytest.mark.asyncio
    async def test_stop_lets_an_in_flight_rebalance_finish(
        self, sample_app_config: AppConfig
    ) -> None:
        config = replace(
            sample_app_config,
            scheduler=SchedulerConfig(
                monitor_interval_seconds=60,
                optimize_interval_seconds=0.01,
                deposit_poll_seconds=60,
            ),
        )
        morpho_exec = SlowSupplyExecution()
        h = Harness(config, scheduler=AsyncioScheduler(), morpho_exec=morpho_exec)
        await h.orchestrator.start()
        await asyncio.wait_for(morpho_exec.supply_started.wait(), timeout=2)

        await h.orchestrator.stop()

        assert h.scheduler.outstanding() == 0
        assert morpho_exec.called("execute_withdraw")
        assert morpho_exec.called("execute_supply")
        assert h.events.of_kind(EventKind.FUNDS_STRANDED) == []
        assert len(h.events.of_kind(EventKind.OPTIMIZATION_EXECUTED)) == 1
        assert h.kinds()[-1] is EventKind.LIFECYCLE

    @pytest.mark.asyncio
    async def test_watch_refused_while_stopped(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)
        assert h.orchestrator.watch_deposits("alice") is None
        assert h.scheduler.outstanding() == 0


class TestAnalyzeMarkets:
    @pytest.mark.asyncio
    async def test_snapshots_every_protocol(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)

        analyses = await h.orchestrator.analyze_markets()

        by_protocol = {a.protocol: a for a in analyses}
        assert len(by_protocol[ProtocolName.MORPHO].markets) == 2
        assert len(by_protocol[ProtocolName.AAVE].markets) == 1
        assert all(e.level is AlertLevel.INFO for e in h.events.of_kind(EventKind.MARKET_ANALYSIS))

    @pytest.mark.asyncio
    async def test_total_protocol_failure_is_an_error_event(
        self, sample_app_config: AppConfig
    ) -> None:
        sources = _sources()
        sources[ProtocolName.AAVE].market_errors[USDC] = MarketDataError("api down")
        h = Harness(sample_app_config, sources=sources)

        analyses = await h.orchestrator.analyze_markets()

        aave = next(a for a in analyses if a.protocol is ProtocolName.AAVE)
        assert aave.markets == ()
        assert aave.failed_market_ids == (USDC,)
        errors = [
            e for e in h.events.of_kind(EventKind.MARKET_ANALYSIS) if e.level is AlertLevel.ERROR
        ]
        assert len(errors) == 1
        assert errors[0].payload["protocol"] == "aave"


class TestCheckPosition:
    @pytest.mark.asyncio
    async def test_reads_configured_protocols(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)

        result = await h.orchestrator.check_position("alice")

        assert isinstance(result, Ok)
        (position,) = result.value
        assert position.market_id == MORPHO_MARKET_A
        assert position.supply_amount == PRINCIPAL
        assert position.health_factor == float("inf")

    @pytest.mark.asyncio
    async def test_unknown_user(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)
        result = await h.orchestrator.check_position("mallory")
        assert isinstance(result, Err)
        assert result.reason is FailureReason.WALLET_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_market(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)
        result = await h.orchestrator.check_position("alice", market_id="0xnope")
        assert isinstance(result, Err)
        assert result.reason is FailureReason.UNKNOWN_MARKET

    @pytest.mark.asyncio
    async def test_explicit_market_failure_is_reported(
        self, sample_app_config: AppConfig
    ) -> None:
        sources = _sources()
        sources[ProtocolName.MORPHO].market_errors[MORPHO_MARKET_A] = MarketDataError("timeout")
        h = Harness(sample_app_config, sources=sources)

        result = await h.orchestrator.check_position("alice", market_id=MORPHO_MARKET_A)

        assert isinstance(result, Err)
        assert result.reason is FailureReason.MARKET_DATA

    @pytest.mark.asyncio
    async def test_transport_failure_is_a_typed_error(
        self, sample_app_config: AppConfig
    ) -> None:
        sources = _sources()
        sources[ProtocolName.MORPHO].position_errors[MORPHO_MARKET_A] = (
            aiohttp.ClientConnectionError("reset")
        )
        h = Harness(sample_app_config, sources=sources)

        result = await h.orchestrator.check_position(
            "alice", ProtocolName.MORPHO, MORPHO_MARKET_A
        )

        assert isinstance(result, Err)
        assert result.reason is FailureReason.MARKET_DATA
        assert "reset" in result.detail

    @pytest.mark.asyncio
    async def test_portfolio_is_valued_in_usd(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)

        result = await h.orchestrator.portfolio("alice")

        assert isinstance(result, Ok)
        assert result.value.total_supply_usd == pytest.approx(10_000.0)
        assert result.value.net_apy == pytest.approx(5.0)


class TestMonitorWallets:
    @pytest.mark.asyncio
    async def test_low_health_factor_alerts(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config, sources=_sources(supply=100, borrow=99))

        (status,) = await h.orchestrator.monitor_wallets()

        assert status.needs_attention
        (alert,) = h.events.of_kind(EventKind.ALERT)
        assert alert.level is AlertLevel.WARNING
        assert alert.user_id == "alice"
        assert "below 1.05" in alert.message

    @pytest.mark.asyncio
    async def test_healthy_wallet_is_quiet(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)

        (status,) = await h.orchestrator.monitor_wallets()

        assert not status.needs_attention
        assert h.events.of_kind(EventKind.ALERT) == []

    @pytest.mark.asyncio
    async def test_monitor_timer_runs_the_check(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config, sources=_sources(supply=100, borrow=99))
        await h.orchestrator.start()

        await h.scheduler.fire("monitor")

        assert len(h.events.of_kind(EventKind.ALERT)) == 1


class TestOptimize:
    @pytest.mark.asyncio
    async def test_profitable_move_is_executed(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)

        (result,) = await h.orchestrator.optimize()

        assert result.suggested_market.market_id == MORPHO_MARKET_B
        assert result.is_profit
        assert not result.gas.degraded
        assert h.morpho_exec.calls[-2:] == [
            ("execute_withdraw", MORPHO_MARKET_A, PRINCIPAL),
            ("execute_supply", MORPHO_MARKET_B, PRINCIPAL),
        ]
        assert EventKind.OPTIMIZATION_FOUND in h.kinds()
        assert EventKind.OPTIMIZATION_EXECUTED in h.kinds()

    @pytest.mark.asyncio
    async def test_advisory_mode_only_reports(self, sample_app_config: AppConfig) -> None:
        h = Harness(_with_optimizer(sample_app_config, auto_execute=False))

        (result,) = await h.orchestrator.optimize(["alice"])

        assert result.is_profit
        assert not h.morpho_exec.called("execute_withdraw")
        (found,) = h.events.of_kind(EventKind.OPTIMIZATION_FOUND)
        assert found.payload["target_market_id"] == MORPHO_MARKET_B
        assert found.payload["is_profit"] is True

    @pytest.mark.asyncio
    async def test_degraded_gas_is_not_executed(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config, with_gas_quoter=False)

        (result,) = await h.orchestrator.optimize()

        assert result.gas.degraded
        assert not h.morpho_exec.called("execute_withdraw")

    @pytest.mark.asyncio
    async def test_degraded_gas_executes_when_allowed(self, sample_app_config: AppConfig) -> None:
        h = Harness(
            _with_optimizer(sample_app_config, execute_on_degraded_gas=True),
            with_gas_quoter=False,
        )

        await h.orchestrator.optimize()

        assert h.morpho_exec.called("execute_withdraw")

    @pytest.mark.asyncio
    async def test_no_better_market(self, sample_app_config: AppConfig) -> None:
        h = Harness(_with_optimizer(sample_app_config, min_apy_delta=5.0))

        assert await h.orchestrator.optimize() == []
        assert h.events.of_kind(EventKind.OPTIMIZATION_FOUND) == []

    @pytest.mark.asyncio
    async def test_missing_wallet_raises_alert(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)

        assert await h.orchestrator.optimize(["ghost"]) == []

        (alert,) = h.events.of_kind(EventKind.ALERT)
        assert alert.level is AlertLevel.ERROR
        assert alert.user_id == "ghost"

    @pytest.mark.asyncio
    async def test_user_with_pass_in_flight_is_skipped(
        self, sample_app_config: AppConfig
    ) -> None:
        h = Harness(sample_app_config)
        lock = asyncio.Lock()
        await lock.acquire()
        h.orchestrator._user_locks["alice"] = lock

        assert await h.orchestrator.optimize(["alice"]) == []
        assert not h.morpho_exec.called("simulate_withdraw")

    @pytest.mark.asyncio
    async def test_failed_withdraw_reports_and_skips_supply(
        self, sample_app_config: AppConfig
    ) -> None:
        h = Harness(sample_app_config)
        h.morpho_exec.withdraw_result = TxResult(success=False, error="reverted")

        await h.orchestrator.optimize()

        assert not h.morpho_exec.called("execute_supply")
        assert len(h.events.of_kind(EventKind.REBALANCE_FAILED)) == 1


class TestDepositWatch:
    @pytest.mark.asyncio
    async def test_deposit_triggers_one_optimization_and_stops_watching(
        self, sample_app_config: AppConfig
    ) -> None:
        wallets = FakeWallets({"alice": WALLET_ADDRESS}, balances=[100, 100, 250])
        h = Harness(_with_optimizer(sample_app_config, auto_execute=False), wallets=wallets)
        await h.orchestrator.start()

        await h.scheduler.fire("deposits:alice")  # baseline
        await h.scheduler.fire("deposits:alice")  # unchanged
        assert h.events.of_kind(EventKind.DEPOSIT_DETECTED) == []

        await h.scheduler.fire("deposits:alice")

        (deposit,) = h.events.of_kind(EventKind.DEPOSIT_DETECTED)
        assert deposit.user_id == "alice"
        assert deposit.payload == {"previous_balance": "100", "balance": "250"}
        assert "deposits:alice" not in h.scheduler.names()
        assert h.orchestrator.watched_users() == ()
        assert len(h.events.of_kind(EventKind.OPTIMIZATION_FOUND)) == 1

    @pytest.mark.asyncio
    async def test_watch_is_not_duplicated(self, sample_app_config: AppConfig) -> None:
        h = Harness(sample_app_config)
        await h.orchestrator.start()

        first = h.orchestrator.watch_deposits("alice")
        second = h.orchestrator.watch_deposits("alice")

        assert first == second
        assert h.scheduler.names().count("deposits:alice") == 1

    @pytest.mark.asyncio
    async def test_balance_errors_keep_watching(self, sample_app_config: AppConfig) -> None:
        wallets = FakeWallets({"alice": WALLET_ADDRESS})
        wallets.get_balance = AsyncMock(side_effect=ConnectionError("rpc down"))
        h = Harness(sample_app_config, wallets=wallets)
        await h.orchestrator.start()

        await h.scheduler.fire("deposits:alice")

        assert "deposits:alice" in h.scheduler.names()
