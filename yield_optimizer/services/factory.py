"""Wire concrete collaborators from configuration."""
from __future__ import annotations

import logging
from collections.abc import Callable

from ..chains import EvmClient
from ..config import AppConfig, ChainConfig, ProtocolConfig
from ..execution import DryRunExecution
from ..interfaces import ExecutionClient, MarketSource, Notifier
from ..models import ProtocolName
from ..notifications import EmailNotifier, TelegramNotifier
from ..oracles import PythOracle
from ..protocols import AaveAdapter, MorphoAdapter
from ..wallets import StaticWalletRegistry
from .events import EventChannel
from .gas import GasQuoter
from .market_cache import MarketSnapshotCache
from .orchestrator import Orchestrator
from .scheduler import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)

# Registry of market source factories keyed by protocol name.
_PROTOCOL_FACTORIES: dict[str, Callable[[ProtocolConfig, ChainConfig], MarketSource]] = {
    ProtocolName.MORPHO.value: MorphoAdapter,
    ProtocolName.AAVE.value: AaveAdapter,
}


def build_notifiers(config: AppConfig) -> list[Notifier]:
    notifiers: list[Notifier] = []
    if config.notifications.telegram.enabled:
        notifiers.append(TelegramNotifier(config.notifications.telegram))
    if config.notifications.email.enabled:
        notifiers.append(EmailNotifier(config.notifications.email))
    return notifiers


def build_orchestrator(config: AppConfig, scheduler: Scheduler | None = None) -> Orchestrator:
    chain_clients = {name: EvmClient(cfg) for name, cfg in config.chains.items()}

    sources: dict[ProtocolName, MarketSource] = {}
    executions: dict[ProtocolName, ExecutionClient] = {}
    for proto_name, proto_cfg in config.protocols.items():
        factory = _PROTOCOL_FACTORIES.get(proto_name)
        if factory is None:
            logger.warning("No market source for protocol '%s'", proto_name)
            continue
        protocol = ProtocolName(proto_name)
        sources[protocol] = factory(proto_cfg, config.chains[proto_cfg.chain])
        executions[protocol] = DryRunExecution(
            protocol, chain_clients[proto_cfg.chain], config.execution.gas_limit_per_leg
        )

    return Orchestrator(
        config=config,
        sources=sources,
        executions=executions,
        wallets=StaticWalletRegistry(config, chain_clients),
        events=EventChannel(build_notifiers(config)),
        scheduler=scheduler or AsyncioScheduler(),
        cache=MarketSnapshotCache(sources, config.cache),
        gas_quoter=GasQuoter(config, PythOracle(config.price_oracle.pyth)),
    )
