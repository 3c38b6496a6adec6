"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import UnknownMarketError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OptimizerConfig:
    min_apy_delta: float = 0.5
    payback_multiple: float = 3.0
    health_factor_warning: float = 1.05
    auto_execute: bool = True
    execute_on_degraded_gas: bool = False


@dataclass(frozen=True)
class SchedulerConfig:
    monitor_interval_seconds: float = 300.0
    optimize_interval_seconds: float = 600.0
    deposit_poll_seconds: float = 30.0


@dataclass(frozen=True)
class CacheConfig:
    ttl_seconds: float = 300.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0


@dataclass(frozen=True)
class WalletConfig:
    user_id: str = ""
    chain: str = ""
    address: str = ""
    protocols: tuple[str, ...] = ()
    deposit_token: str = ""


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int = 8453
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class MarketConfig:
    market_id: str = ""
    collateral_token: str = ""
    loan_token: str = ""
    lltv: float = 0.0


@dataclass(frozen=True)
class ProtocolConfig:
    chain: str = ""
    api_url: str = ""
    pool_address: str = ""
    markets: dict[str, MarketConfig] = field(default_factory=dict)

    def market_ids(self) -> tuple[str, ...]:
        return tuple(m.market_id for m in self.markets.values())

    def find_market(self, market_id: str) -> tuple[str, MarketConfig] | None:
        wanted = market_id.lower()
        for name, market in self.markets.items():
            if market.market_id.lower() == wanted:
                return name, market
        return None

    def require_market(self, protocol: str, market_id: str) -> tuple[str, MarketConfig]:
        found = self.find_market(market_id)
        if found is None:
            raise UnknownMarketError(protocol, market_id)
        return found


@dataclass(frozen=True)
class TokenConfig:
    address: str = ""
    decimals: int = 18


@dataclass(frozen=True)
class ExecutionConfig:
    gas_limit_per_leg: int = 500_000
    native_symbol: str = "ETH"


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    wallets: tuple[WalletConfig, ...] = ()
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    protocols: dict[str, ProtocolConfig] = field(default_factory=dict)
    tokens: dict[str, TokenConfig] = field(default_factory=dict)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    def token_by_address(self, address: str) -> tuple[str, TokenConfig] | None:
        wanted = address.lower()
        for symbol, token in self.tokens.items():
            if token.address.lower() == wanted:
                return symbol, token
        return None


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_optimizer(raw: dict[str, Any]) -> OptimizerConfig:
    return OptimizerConfig(
        min_apy_delta=float(raw.get("min_apy_delta", 0.5)),
        payback_multiple=float(raw.get("payback_multiple", 3.0)),
        health_factor_warning=float(raw.get("health_factor_warning", 1.05)),
        auto_execute=bool(raw.get("auto_execute", True)),
        execute_on_degraded_gas=bool(raw.get("execute_on_degraded_gas", False)),
    )


def _build_scheduler(raw: dict[str, Any]) -> SchedulerConfig:
    return SchedulerConfig(
        monitor_interval_seconds=float(raw.get("monitor_interval_seconds", 300)),
        optimize_interval_seconds=float(raw.get("optimize_interval_seconds", 600)),
        deposit_poll_seconds=float(raw.get("deposit_poll_seconds", 30)),
    )


def _build_cache(raw: dict[str, Any]) -> CacheConfig:
    return CacheConfig(
        ttl_seconds=float(raw.get("ttl_seconds", 300)),
        max_retries=int(raw.get("max_retries", 3)),
        retry_delay_seconds=float(raw.get("retry_delay_seconds", 1.0)),
    )


def _build_wallets(raw: list[dict[str, Any]]) -> tuple[WalletConfig, ...]:
    wallets: list[WalletConfig] = []
    for w in raw:
        wallets.append(
            WalletConfig(
                user_id=str(w.get("user_id", "")),
                chain=w.get("chain", ""),
                address=w.get("address", ""),
                protocols=tuple(w.get("protocols", [])),
                deposit_token=w.get("deposit_token", ""),
            )
        )
    return tuple(wallets)


def _build_chains(raw: dict[str, Any]) -> dict[str, ChainConfig]:
    chains: dict[str, ChainConfig] = {}
    for name, cfg in raw.items():
        chains[name] = ChainConfig(
            chain_id=int(cfg.get("chain_id", 8453)),
            rpc_endpoints=tuple(cfg.get("rpc_endpoints", [])),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
        )
    return chains


def _build_markets(raw: dict[str, Any]) -> dict[str, MarketConfig]:
    markets: dict[str, MarketConfig] = {}
    for name, cfg in raw.items():
        markets[name] = MarketConfig(
            market_id=str(cfg.get("id", cfg.get("market_id", ""))),
            collateral_token=cfg.get("collateral_token", ""),
            loan_token=cfg.get("loan_token", ""),
            lltv=float(cfg.get("lltv", 0.0)),
        )
    return markets


def _build_protocols(raw: dict[str, Any]) -> dict[str, ProtocolConfig]:
    protocols: dict[str, ProtocolConfig] = {}
    for name, cfg in raw.items():
        protocols[name] = ProtocolConfig(
            chain=cfg.get("chain", ""),
            api_url=cfg.get("api_url", ""),
            pool_address=cfg.get("pool_address", ""),
            markets=_build_markets(cfg.get("markets", {})),
        )
    return protocols


def _build_tokens(raw: dict[str, Any]) -> dict[str, TokenConfig]:
    return {
        symbol: TokenConfig(
            address=cfg.get("address", ""),
            decimals=int(cfg.get("decimals", 18)),
        )
        for symbol, cfg in raw.items()
    }


def _build_execution(raw: dict[str, Any]) -> ExecutionConfig:
    return ExecutionConfig(
        gas_limit_per_leg=int(raw.get("gas_limit_per_leg", 500_000)),
        native_symbol=raw.get("native_symbol", "ETH"),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_config(raw: dict[str, Any]) -> AppConfig:
    """Build and validate an AppConfig from an already-parsed mapping."""
    cfg = AppConfig(
        optimizer=_build_optimizer(raw.get("optimizer") or {}),
        scheduler=_build_scheduler(raw.get("scheduler") or {}),
        cache=_build_cache(raw.get("cache") or {}),
        wallets=_build_wallets(raw.get("wallets") or []),
        chains=_build_chains(raw.get("chains") or {}),
        protocols=_build_protocols(raw.get("protocols") or {}),
        tokens=_build_tokens(raw.get("tokens") or {}),
        execution=_build_execution(raw.get("execution") or {}),
        price_oracle=_build_price_oracle(raw.get("price_oracle") or {}),
        notifications=_build_notifications(raw.get("notifications") or {}),
    )
    _validate(cfg)
    return cfg


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    cfg = build_config(_interpolate_env(raw))
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.wallets:
        raise ValueError("At least one wallet must be configured")

    seen: set[str] = set()
    for wallet in cfg.wallets:
        if not wallet.user_id:
            raise ValueError(f"Wallet {wallet.address or '?'} has no user_id")
        if wallet.user_id in seen:
            raise ValueError(f"Duplicate wallet user_id '{wallet.user_id}'")
        seen.add(wallet.user_id)
        if not wallet.address:
            raise ValueError(f"Wallet '{wallet.user_id}' has no address")
        if wallet.chain not in cfg.chains:
            raise ValueError(
                f"Wallet '{wallet.user_id}' references unknown chain '{wallet.chain}'"
            )
        for proto in wallet.protocols:
            if proto not in cfg.protocols:
                raise ValueError(
                    f"Wallet '{wallet.user_id}' references unknown protocol '{proto}'"
                )
        if wallet.deposit_token and wallet.deposit_token not in cfg.tokens:
            raise ValueError(
                f"Wallet '{wallet.user_id}' references unknown token '{wallet.deposit_token}'"
            )

    for proto_name, proto in cfg.protocols.items():
        if proto.chain not in cfg.chains:
            raise ValueError(
                f"Protocol '{proto_name}' references unknown chain '{proto.chain}'"
            )
        for market_name, market in proto.markets.items():
            if not market.market_id:
                raise ValueError(f"Market '{proto_name}/{market_name}' has no id")
            for token in (market.loan_token, market.collateral_token):
                if token and token not in cfg.tokens:
                    raise ValueError(
                        f"Market '{proto_name}/{market_name}' references unknown token '{token}'"
                    )
