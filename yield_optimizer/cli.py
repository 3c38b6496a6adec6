"""Command-line interface for the DeFi yield optimizer."""
from __future__ import annotations

import argparse
import asyncio
import sys

from .config import load_config
from .logging_setup import configure_logging
from .models import (
    Ok,
    OptimizationResult,
    PortfolioStatus,
    ProtocolAnalysis,
    ProtocolName,
)
from .services import Orchestrator, build_orchestrator, build_portfolio


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="defi-yield-optimizer",
        description="Yield optimizer for Morpho and Aave lending markets",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("analyze", help="Snapshot every configured market")

    positions_parser = sub.add_parser("positions", help="Show a user's positions and health")
    positions_parser.add_argument("user_id", help="Configured wallet user_id")
    positions_parser.add_argument(
        "--protocol",
        choices=[p.value for p in ProtocolName],
        default=None,
        help="Restrict to one protocol",
    )
    positions_parser.add_argument("--market", default=None, help="Restrict to one market id")

    optimize_parser = sub.add_parser("optimize", help="Run one optimization pass")
    optimize_parser.add_argument(
        "user_ids", nargs="*", help="Users to optimize (default: every configured wallet)"
    )

    sub.add_parser("run", help="Run monitoring, optimization and deposit loops until interrupted")

    return parser


# ---------------------------------------------------------------------------
# Text rendering
# ---------------------------------------------------------------------------


def format_analysis(analyses: tuple[ProtocolAnalysis, ...]) -> str:
    lines: list[str] = []
    for analysis in analyses:
        lines.append(f"━━ {analysis.protocol.value.upper()} ━━")
        for m in analysis.markets:
            label = m.name or m.market_id
            lines.append(
                f"  {label}: supply {m.supply_apy:.2f}% (+{m.rewards_apy:.2f}% rewards) · "
                f"borrow {m.borrow_apy:.2f}% · util {m.utilization:.2f}% "
                f"[{m.utilization_risk.value}{'' if m.is_healthy else ', UNHEALTHY'}]"
            )
        for market_id in analysis.failed_market_ids:
            lines.append(f"  {market_id}: unavailable")
        if not analysis.markets and not analysis.failed_market_ids:
            lines.append("  No markets configured.")
    return "\n".join(lines)


def format_portfolio(user_id: str, status: PortfolioStatus) -> str:
    hf = "∞" if status.health_factor == float("inf") else f"{status.health_factor:.2f}"
    lines = [
        f"📊 {user_id}",
        f"Supplied: ${status.total_supply_usd:,.2f} · Borrowed: ${status.total_borrow_usd:,.2f}",
        f"Health factor: {hf} · Net APY: {status.net_apy:.2f}%",
    ]
    if not status.positions:
        lines.append("No active positions found.")
    for p in status.positions:
        lines.append(
            f"  {p.protocol.value} {p.market_name or p.market_id}: "
            f"supply {p.supply_amount} borrow {p.borrow_amount} @ {p.metrics.supply_apy:.2f}%"
        )
    return "\n".join(lines)


def format_optimizations(results: list[OptimizationResult]) -> str:
    if not results:
        return "No better markets found."
    lines: list[str] = []
    for r in results:
        target = r.suggested_market
        target_label = f"{target.protocol.value} {target.name or target.market_id}" if target else "-"
        verdict = "PROFITABLE" if r.is_profit else "not profitable"
        degraded = " (gas estimate degraded)" if r.gas.degraded else ""
        lines.append(
            f"{r.user_id}: {r.current_position.protocol.value} "
            f"{r.current_position.market_name or r.current_position.market_id} "
            f"{r.current_apy:.2f}% -> {target_label} {r.potential_apy:.2f}% · "
            f"monthly +{r.monthly_profit:.2f} vs gas {r.gas.cost_in_token:.2f} · "
            f"{verdict}{degraded}"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run_forever(orchestrator: Orchestrator) -> None:
    await orchestrator.start()
    try:
        await asyncio.Event().wait()
    finally:
        await orchestrator.stop()


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command and return the exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    orchestrator = build_orchestrator(config)

    if args.command == "analyze":
        print(format_analysis(await orchestrator.analyze_markets()))
    elif args.command == "positions":
        if args.protocol or args.market:
            protocol = ProtocolName(args.protocol) if args.protocol else None
            result = await orchestrator.check_position(args.user_id, protocol, args.market)
            if not isinstance(result, Ok):
                print(f"Error: {result.detail}", file=sys.stderr)
                return 1
            print(format_portfolio(args.user_id, build_portfolio(result.value)))
        else:
            status = await orchestrator.portfolio(args.user_id)
            if not isinstance(status, Ok):
                print(f"Error: {status.detail}", file=sys.stderr)
                return 1
            print(format_portfolio(args.user_id, status.value))
    elif args.command == "optimize":
        results = await orchestrator.optimize(args.user_ids or None)
        print(format_optimizations(results))
    elif args.command == "run":
        await _run_forever(orchestrator)
    else:
        build_parser().print_help()
        return 1
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        sys.exit(130)
