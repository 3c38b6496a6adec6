"""Outbound event channel — a typed log of what the optimizer did, fanned out to notifiers."""
from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..interfaces import Notifier
from ..models import AlertLevel

logger = logging.getLogger(__name__)

MAX_EVENTS = 1000


class EventKind(str, Enum):
    ALERT = "alert"
    MARKET_ANALYSIS = "market_analysis"
    OPTIMIZATION_FOUND = "optimization_found"
    OPTIMIZATION_EXECUTED = "optimization_executed"
    REBALANCE_FAILED = "rebalance_failed"
    FUNDS_STRANDED = "funds_stranded"
    DEPOSIT_DETECTED = "deposit_detected"
    LIFECYCLE = "lifecycle"


# Delivered through the unmuted alert path regardless of level.
ALERT_KINDS = frozenset({EventKind.ALERT, EventKind.REBALANCE_FAILED, EventKind.FUNDS_STRANDED})

_LEVEL_ICONS = {
    AlertLevel.INFO: "ℹ️",
    AlertLevel.WARNING: "⚠️",
    AlertLevel.ERROR: "❌",
    AlertLevel.CRITICAL: "🚨",
}


@dataclass(frozen=True)
class Event:
    kind: EventKind
    level: AlertLevel
    message: str
    user_id: str = ""
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def subject(self) -> str:
        return f"{self.level.value.upper()}: {self.kind.value.replace('_', ' ')}"


def render(event: Event) -> str:
    """Plain-text rendering used by notifiers."""
    lines = [f"{_LEVEL_ICONS[event.level]} {event.message}"]
    if event.user_id:
        lines.append(f"User: {event.user_id}")
    for key, value in event.payload.items():
        lines.append(f"{key}: {value}")
    lines.append(f"{event.timestamp.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    return "\n".join(lines)


class EventChannel:
    """Bounded in-memory event log plus notifier fan-out."""

    def __init__(self, notifiers: Sequence[Notifier] = (), max_events: int = MAX_EVENTS) -> None:
        self._notifiers = list(notifiers)
        self._events: deque[Event] = deque(maxlen=max_events)

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    def drain(self) -> list[Event]:
        """Return and forget every recorded event."""
        drained = list(self._events)
        self._events.clear()
        return drained

    def of_kind(self, kind: EventKind) -> list[Event]:
        return [e for e in self._events if e.kind == kind]

    async def publish(self, event: Event) -> None:
        self._events.append(event)
        logger.log(_log_level(event.level), "[%s] %s", event.kind.value, event.message)

        if not self._notifiers:
            return
        text = render(event)
        use_alert = event.kind in ALERT_KINDS or event.level in (
            AlertLevel.ERROR,
            AlertLevel.CRITICAL,
        )
        for notifier in self._notifiers:
            try:
                if use_alert:
                    await notifier.send_alert(text, subject=event.subject)
                else:
                    await notifier.send_log(text, silent=event.level == AlertLevel.INFO)
            except Exception as e:
                logger.error("Notifier %s failed: %s", notifier.channel, e)


def _log_level(level: AlertLevel) -> int:
    return {
        AlertLevel.INFO: logging.INFO,
        AlertLevel.WARNING: logging.WARNING,
        AlertLevel.ERROR: logging.ERROR,
        AlertLevel.CRITICAL: logging.CRITICAL,
    }[level]
