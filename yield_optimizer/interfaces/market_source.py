"""Protocol market collaborator — one implementation per lending protocol."""
from typing import Protocol

from ..models import ProtocolName, RawMarket, RawPosition


class MarketSource(Protocol):
    """Read access to the configured markets of one lending protocol.

    Implementations raise on failure; callers decide whether to skip or abort.
    """

    @property
    def protocol(self) -> ProtocolName: ...

    def market_ids(self) -> tuple[str, ...]: ...

    async def fetch_market(self, market_id: str) -> RawMarket: ...

    async def fetch_position(self, user_address: str, market_id: str) -> RawPosition: ...
