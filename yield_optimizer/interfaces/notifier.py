"""Notifier protocol — outbound alert channel abstraction."""
from typing import Protocol


class Notifier(Protocol):
    """Abstract interface for delivering rendered events to people."""

    @property
    def channel(self) -> str: ...

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
