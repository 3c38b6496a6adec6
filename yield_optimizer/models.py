"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")

# Reported as the health factor of a position (or portfolio) with no debt.
HEALTHY_SENTINEL = float("inf")


class ProtocolName(str, Enum):
    MORPHO = "morpho"
    AAVE = "aave"


class UtilizationRisk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AlertLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class FailureReason(str, Enum):
    MARKET_DATA = "market_data"
    UNKNOWN_MARKET = "unknown_market"
    WALLET_NOT_FOUND = "wallet_not_found"
    NOT_EXECUTABLE = "not_executable"
    WITHDRAW_FAILED = "withdraw_failed"
    SUPPLY_FAILED = "supply_failed"


# ---------------------------------------------------------------------------
# Typed results passed between components
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    reason: FailureReason
    detail: str = ""

    @property
    def is_ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


# ---------------------------------------------------------------------------
# Collaborator payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawMarket:
    """Market state as reported by a protocol collaborator.

    Rates (``supply_apy``, ``borrow_apy``, ``rewards_apy``, ``utilization``)
    are wad-scaled fractions; amounts are token-native integers.
    """

    market_id: str
    supply_apy: int
    borrow_apy: int
    utilization: int
    total_supply_assets: int
    total_borrow_assets: int
    liquidity: int
    total_supply_shares: int = 0
    total_borrow_shares: int = 0
    rewards_apy: int = 0
    collateral_token: str = ""
    loan_token: str = ""
    lltv: float = 0.0
    name: str = ""


@dataclass(frozen=True)
class RawPosition:
    """A user's balances in one market; shares are zero when the protocol has none."""

    supply_shares: int = 0
    borrow_shares: int = 0
    supply_assets: int = 0
    borrow_assets: int = 0


@dataclass(frozen=True)
class SimulationResult:
    success: bool
    gas_estimate: int = 0
    error: str = ""


@dataclass(frozen=True)
class TxResult:
    success: bool
    tx_hash: str = ""
    error: str = ""


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MarketSnapshot:
    """One lending market at one point in time. APYs and utilization in percent."""

    protocol: ProtocolName
    market_id: str
    supply_apy: float
    borrow_apy: float
    utilization: float
    total_supply: int
    total_borrow: int
    liquidity: int
    is_healthy: bool
    utilization_risk: UtilizationRisk
    rewards_apy: float = 0.0
    total_supply_shares: int = 0
    total_borrow_shares: int = 0
    collateral_token: str = ""
    loan_token: str = ""
    lltv: float = 0.0
    name: str = ""
    fetched_at: float = 0.0

    @property
    def total_apy(self) -> float:
        return self.supply_apy + self.rewards_apy

    @property
    def is_safe_target(self) -> bool:
        return self.is_healthy and self.utilization_risk != UtilizationRisk.HIGH


@dataclass(frozen=True)
class PositionMetrics:
    """Rates copied from the market snapshot when the position was read."""

    supply_apy: float = 0.0
    borrow_apy: float = 0.0
    rewards_apy: float = 0.0

    @property
    def total_apy(self) -> float:
        return self.supply_apy + self.rewards_apy


@dataclass(frozen=True)
class Position:
    """A user's stake in one market, read fresh on every check."""

    protocol: ProtocolName
    market_id: str
    supply_amount: int
    borrow_amount: int
    health_factor: float
    metrics: PositionMetrics = field(default_factory=PositionMetrics)
    loan_token: str = ""
    market_name: str = ""


@dataclass(frozen=True)
class PortfolioStatus:
    total_supply_usd: float
    total_borrow_usd: float
    health_factor: float
    net_apy: float
    positions: tuple[Position, ...] = ()


@dataclass(frozen=True)
class ProtocolAnalysis:
    """Snapshots for every configured market of one protocol."""

    protocol: ProtocolName
    markets: tuple[MarketSnapshot, ...]
    failed_market_ids: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class GasEstimate:
    """Gas for the withdraw + supply pair, in gas units, wei and loan-token units."""

    withdraw_gas: int = 0
    supply_gas: int = 0
    gas_price: int = 0
    cost_in_token: float = 0.0
    degraded: bool = False
    issues: tuple[str, ...] = ()

    @property
    def total_gas(self) -> int:
        return self.withdraw_gas + self.supply_gas

    @property
    def cost_wei(self) -> int:
        return self.total_gas * self.gas_price


@dataclass(frozen=True)
class OptimizationResult:
    current_position: Position
    suggested_market: MarketSnapshot | None
    current_apy: float
    potential_apy: float
    gas: GasEstimate
    monthly_profit: float
    is_profit: bool
    user_id: str = ""
    current_market: MarketSnapshot | None = None

    @property
    def apy_delta(self) -> float:
        return self.potential_apy - self.current_apy

    @property
    def gas_cost(self) -> int:
        """Combined gas cost in native-token wei."""
        return self.gas.cost_wei


class RebalanceStatus(str, Enum):
    REFUSED = "refused"
    COMPLETED = "completed"
    WITHDRAW_FAILED = "withdraw_failed"
    FUNDS_STRANDED = "funds_stranded"


@dataclass(frozen=True)
class RebalanceOutcome:
    status: RebalanceStatus
    user_id: str
    amount: int = 0
    source_protocol: ProtocolName | None = None
    source_market_id: str = ""
    target_protocol: ProtocolName | None = None
    target_market_id: str = ""
    withdraw_tx: str = ""
    supply_tx: str = ""
    failed_leg: str = ""
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == RebalanceStatus.COMPLETED

    def as_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "user_id": self.user_id,
            "amount": str(self.amount),
            "source_protocol": self.source_protocol.value if self.source_protocol else "",
            "source_market_id": self.source_market_id,
            "target_protocol": self.target_protocol.value if self.target_protocol else "",
            "target_market_id": self.target_market_id,
            "withdraw_tx": self.withdraw_tx,
            "supply_tx": self.supply_tx,
            "failed_leg": self.failed_leg,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class WalletStatus:
    needs_attention: bool
    level: AlertLevel
    message: str
    portfolio: PortfolioStatus | None = None
