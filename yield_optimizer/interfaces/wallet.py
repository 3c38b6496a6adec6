"""Wallet collaborator — identity lookup, never key material."""
from typing import Protocol


class WalletProvider(Protocol):
    """Resolves users to wallet addresses and reads their deposit balance."""

    def user_ids(self) -> tuple[str, ...]: ...

    def get_address(self, user_id: str) -> str | None: ...

    async def get_balance(self, user_id: str) -> int: ...
