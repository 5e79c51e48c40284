"""
warden.engine.events — LedgerEvent envelope and observer hub
=============================================================

Collaborators that need to react to ledger or evolution changes (toasts,
evolution animation sequencers, chat notifiers) register a listener here.
Services publish **after** their transaction commits, so a listener never
sees state that might still roll back.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

__all__ = ["EventKind", "LedgerEvent", "LedgerEventHub", "Listener", "publish"]


class EventKind(enum.StrEnum):
    ENERGY_CREDITED = "energy_credited"
    ENERGY_DEBITED = "energy_debited"
    GUARDIAN_EVOLVED = "guardian_evolved"
    GUARDIAN_UNLOCKED = "guardian_unlocked"
    REPORT_SUBMITTED = "report_submitted"
    REPORT_MODIFIED = "report_modified"
    MISSION_CLAIMED = "mission_claimed"


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """Something that happened to a user's ledger, guardian or report."""

    kind: EventKind
    user_id: str
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


Listener = Callable[[LedgerEvent], None]


class LedgerEventHub:
    """Synchronous fan-out of :class:`LedgerEvent` to registered listeners.

    Thread-safe registration.  A listener that raises is logged and skipped;
    the remaining listeners still run and the error never reaches the
    publishing service.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[EventKind | None, list[Listener]] = {}

    def subscribe(self, listener: Listener, kind: EventKind | None = None) -> None:
        """Register *listener* for *kind*, or for every kind when ``None``."""
        with self._lock:
            self._listeners.setdefault(kind, []).append(listener)

    def unsubscribe(self, listener: Listener, kind: EventKind | None = None) -> None:
        with self._lock:
            bucket = self._listeners.get(kind, [])
            if listener in bucket:
                bucket.remove(listener)

    def publish(self, event: LedgerEvent) -> None:
        with self._lock:
            targets = list(self._listeners.get(event.kind, ()))
            targets += self._listeners.get(None, ())
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Listener %r failed on %s for user %s",
                    listener, event.kind, event.user_id,
                )

    def publish_all(self, events: list[LedgerEvent]) -> None:
        for event in events:
            self.publish(event)


def publish(hub: LedgerEventHub | None, events: list[LedgerEvent]) -> None:
    """Publish *events* if a hub was supplied; services accept ``hub=None``."""
    if hub is not None:
        hub.publish_all(events)
