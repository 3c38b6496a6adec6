"""Shared test fixtures, sample data and fake collaborators."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from yield_optimizer.config import (
    AppConfig,
    CacheConfig,
    ChainConfig,
    EmailConfig,
    MarketConfig,
    NotificationsConfig,
    OptimizerConfig,
    PriceOracleConfig,
    ProtocolConfig,
    PythConfig,
    TelegramConfig,
    TokenConfig,
    WalletConfig,
)
from yield_optimizer.models import (
    MarketSnapshot,
    Position,
    PositionMetrics,
    ProtocolAnalysis,
    ProtocolName,
    RawMarket,
    RawPosition,
    SimulationResult,
    TxResult,
    UtilizationRisk,
)
from yield_optimizer.services.scheduler import Job, TimerHandle
from yield_optimizer.units import WAD

USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
WETH = "0x4200000000000000000000000000000000000006"
MORPHO_MARKET_A = "0xe73d71cacb1a11ce1033966787e21b85573b8b8a3936bbd7d83b2546a1077c26"
MORPHO_MARKET_B = "0x8793cf302b8ffd655ab97bd1c695dbd967807e8367a65cb2f4edaf1380ba1bda"
WALLET_ADDRESS = "0x1111111111111111111111111111111111111111"


def pct_to_wad(percent: float) -> int:
    return int(round(percent * WAD / 100))


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


class FakeMarketSource:
    """In-memory MarketSource recording every fetch."""

    def __init__(
        self,
        protocol: ProtocolName,
        markets: dict[str, RawMarket],
        positions: dict[str, RawPosition] | None = None,
    ) -> None:
        self._protocol = protocol
        self.markets = markets
        self.positions = positions or {}
        self.market_errors: dict[str, Exception] = {}
        self.position_errors: dict[str, Exception] = {}
        self.fetch_calls: list[str] = []
        self.position_calls: list[tuple[str, str]] = []

    @property
    def protocol(self) -> ProtocolName:
        return self._protocol

    def market_ids(self) -> tuple[str, ...]:
        return tuple(self.markets)

    async def fetch_market(self, market_id: str) -> RawMarket:
        self.fetch_calls.append(market_id)
        if market_id in self.market_errors:
            raise self.market_errors[market_id]
        return self.markets[market_id]

    async def fetch_position(self, user_address: str, market_id: str) -> RawPosition:
        self.position_calls.append((user_address, market_id))
        if market_id in self.position_errors:
            raise self.position_errors[market_id]
        return self.positions.get(market_id, RawPosition())


class FakeExecution:
    """Execution collaborator with scripted results and a call log."""

    def __init__(
        self,
        withdraw: TxResult | None = None,
        supply: TxResult | None = None,
        gas_estimate: int = 100_000,
        gas_price: int = 1_000_000_000,
    ) -> None:
        self.withdraw_result = withdraw or TxResult(success=True, tx_hash="0xwithdraw")
        self.supply_result = supply or TxResult(success=True, tx_hash="0xsupply")
        self.gas_estimate = gas_estimate
        self.gas_price = gas_price
        self.calls: list[tuple[str, str, int]] = []

    async def simulate_withdraw(self, market_id: str, amount: int) -> SimulationResult:
        self.calls.append(("simulate_withdraw", market_id, amount))
        return SimulationResult(success=True, gas_estimate=self.gas_estimate)

    async def simulate_supply(self, market_id: str, amount: int) -> SimulationResult:
        self.calls.append(("simulate_supply", market_id, amount))
        return SimulationResult(success=True, gas_estimate=self.gas_estimate)

    async def execute_withdraw(self, market_id: str, amount: int) -> TxResult:
        self.calls.append(("execute_withdraw", market_id, amount))
        return self.withdraw_result

    async def execute_supply(self, market_id: str, amount: int) -> TxResult:
        self.calls.append(("execute_supply", market_id, amount))
        return self.supply_result

    async def get_gas_price(self) -> int:
        return self.gas_price

    def called(self, name: str) -> bool:
        return any(call[0] == name for call in self.calls)


class FakeWallets:
    def __init__(self, addresses: dict[str, str], balances: list[int] | None = None) -> None:
        self.addresses = addresses
        self.balances = list(balances or [])

    def user_ids(self) -> tuple[str, ...]:
        return tuple(self.addresses)

    def get_address(self, user_id: str) -> str | None:
        return self.addresses.get(user_id)

    async def get_balance(self, user_id: str) -> int:
        if len(self.balances) > 1:
            return self.balances.pop(0)
        return self.balances[0] if self.balances else 0


class FakeScheduler:
    """Records timers instead of running them; jobs are fired by hand."""

    def __init__(self) -> None:
        self._next_id = 0
        self.jobs: dict[TimerHandle, Job] = {}
        self.intervals: dict[TimerHandle, float] = {}

    def every(self, name: str, interval: float, job: Job) -> TimerHandle:
        self._next_id += 1
        handle = TimerHandle(self._next_id, name)
        self.jobs[handle] = job
        self.intervals[handle] = interval
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        self.jobs.pop(handle, None)
        self.intervals.pop(handle, None)

    def cancel_all(self) -> None:
        self.jobs.clear()
        self.intervals.clear()

    def outstanding(self) -> int:
        return len(self.jobs)

    def names(self) -> list[str]:
        return [h.name for h in self.jobs]

    async def fire(self, name: str) -> None:
        for handle, job in list(self.jobs.items()):
            if handle.name == name:
                await job()


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def make_raw_market(
    market_id: str = MORPHO_MARKET_A,
    supply_apy: float = 5.0,
    utilization: float = 40.0,
    total_supply: int = 1_000_000_000_000,
    total_borrow: int = 400_000_000_000,
    rewards_apy: float = 0.0,
    loan_token: str = USDC,
    name: str = "cbETH-USDC",
    **extra,
) -> RawMarket:
    return RawMarket(
        market_id=market_id,
        supply_apy=pct_to_wad(supply_apy),
        borrow_apy=pct_to_wad(supply_apy + 2),
        utilization=pct_to_wad(utilization),
        total_supply_assets=total_supply,
        total_borrow_assets=total_borrow,
        liquidity=max(total_supply - total_borrow, 0),
        rewards_apy=pct_to_wad(rewards_apy),
        loan_token=loan_token,
        name=name,
        **extra,
    )


def make_snapshot(
    market_id: str = MORPHO_MARKET_B,
    protocol: ProtocolName = ProtocolName.MORPHO,
    supply_apy: float = 7.0,
    rewards_apy: float = 0.0,
    is_healthy: bool = True,
    risk: UtilizationRisk = UtilizationRisk.LOW,
    loan_token: str = USDC,
) -> MarketSnapshot:
    return MarketSnapshot(
        protocol=protocol,
        market_id=market_id,
        supply_apy=supply_apy,
        borrow_apy=supply_apy + 2,
        utilization=40.0,
        total_supply=1_000_000,
        total_borrow=400_000,
        liquidity=600_000,
        is_healthy=is_healthy,
        utilization_risk=risk,
        rewards_apy=rewards_apy,
        loan_token=loan_token,
    )


def make_position(
    market_id: str = MORPHO_MARKET_A,
    protocol: ProtocolName = ProtocolName.MORPHO,
    supply: int = 10_000,
    borrow: int = 0,
    supply_apy: float = 5.0,
    health_factor: float = float("inf"),
    loan_token: str = USDC,
) -> Position:
    return Position(
        protocol=protocol,
        market_id=market_id,
        supply_amount=supply,
        borrow_amount=borrow,
        health_factor=health_factor,
        metrics=PositionMetrics(supply_apy=supply_apy, borrow_apy=supply_apy + 2),
        loan_token=loan_token,
    )


def make_analysis(*snapshots: MarketSnapshot) -> ProtocolAnalysis:
    protocol = snapshots[0].protocol if snapshots else ProtocolName.MORPHO
    return ProtocolAnalysis(protocol=protocol, markets=tuple(snapshots))


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id=8453,
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_morpho_config() -> ProtocolConfig:
    return ProtocolConfig(
        chain="base",
        api_url="https://morpho.example.com/graphql",
        markets={
            "cbETH-USDC": MarketConfig(
                market_id=MORPHO_MARKET_A, collateral_token="cbETH", loan_token="USDC", lltv=86.0
            ),
            "WETH-USDC": MarketConfig(
                market_id=MORPHO_MARKET_B, collateral_token="WETH", loan_token="USDC", lltv=86.0
            ),
        },
    )


@pytest.fixture()
def sample_aave_config() -> ProtocolConfig:
    return ProtocolConfig(
        chain="base",
        api_url="https://aave.example.com/graphql",
        pool_address="0xPOOL",
        markets={"USDC": MarketConfig(market_id=USDC, loan_token="USDC")},
    )


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.example.com/v2/updates/price/latest",
        feeds={"ETH": "eee111", "USDC": "ccc333", "WETH": "eee111"},
    )


@pytest.fixture()
def sample_app_config(
    sample_chain_config: ChainConfig,
    sample_morpho_config: ProtocolConfig,
    sample_aave_config: ProtocolConfig,
    sample_pyth_config: PythConfig,
) -> AppConfig:
    return AppConfig(
        optimizer=OptimizerConfig(),
        cache=CacheConfig(ttl_seconds=300, max_retries=2, retry_delay_seconds=0),
        wallets=(
            WalletConfig(
                user_id="alice",
                chain="base",
                address=WALLET_ADDRESS,
                protocols=("morpho", "aave"),
                deposit_token="USDC",
            ),
        ),
        chains={"base": sample_chain_config},
        protocols={"morpho": sample_morpho_config, "aave": sample_aave_config},
        tokens={
            "USDC": TokenConfig(address=USDC, decimals=6),
            "WETH": TokenConfig(address=WETH, decimals=18),
            "cbETH": TokenConfig(address="0x2Ae3F1Ec7F1F5012CFEab0185bfc7aa3cf0DEc22"),
        },
        price_oracle=PriceOracleConfig(provider="pyth", pyth=sample_pyth_config),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_scheduler() -> FakeScheduler:
    return FakeScheduler()


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    optimizer:
      min_apy_delta: 0.75
      auto_execute: false
    scheduler:
      monitor_interval_seconds: 120
    wallets:
      - user_id: alice
        chain: base
        address: "{WALLET_ADDRESS}"
        protocols: [morpho, aave]
        deposit_token: USDC
    chains:
      base:
        chain_id: 8453
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
    tokens:
      USDC: {{address: "{USDC}", decimals: 6}}
      cbETH: {{address: "0x2Ae3F1Ec7F1F5012CFEab0185bfc7aa3cf0DEc22", decimals: 18}}
    protocols:
      morpho:
        chain: base
        markets:
          cbETH-USDC:
            id: "{MORPHO_MARKET_A}"
            collateral_token: cbETH
            loan_token: USDC
            lltv: 86
      aave:
        chain: base
        markets:
          USDC:
            id: "{USDC}"
            loan_token: USDC
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {{ETH: "eee", USDC: "ccc"}}
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
