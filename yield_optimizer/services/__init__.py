"""Core services: market cache, positions, opportunity finding, rebalancing, scheduling."""
from .events import Event, EventChannel, EventKind
from .factory import build_orchestrator
from .gas import GasQuoter
from .market_cache import MarketSnapshotCache, build_snapshot
from .opportunity import OpportunityFinder, is_profitable, monthly_profit, select_candidate
from .orchestrator import Orchestrator, OrchestratorState
from .position_reader import PositionReader, build_portfolio
from .rebalancer import RebalanceExecutor
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle

__all__ = [
    "AsyncioScheduler",
    "Event",
    "EventChannel",
    "EventKind",
    "GasQuoter",
    "MarketSnapshotCache",
    "OpportunityFinder",
    "Orchestrator",
    "OrchestratorState",
    "PositionReader",
    "RebalanceExecutor",
    "Scheduler",
    "TimerHandle",
    "build_orchestrator",
    "build_portfolio",
    "build_snapshot",
    "is_profitable",
    "monthly_profit",
    "select_candidate",
]
