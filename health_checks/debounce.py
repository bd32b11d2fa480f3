from __future__ import annotations

import enum
import logging
import threading
from typing import Iterable, Protocol

from health_checks.models import Result


LOGGER = logging.getLogger(__name__)

SEVERITY_ALERT = "danger"
SEVERITY_RESOLVED = "good"


class NotificationState(str, enum.Enum):
    UNSET = "unset"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class Action(str, enum.Enum):
    NONE = "none"
    ALERT = "alert"
    RESOLVE = "resolve"


def next_state(prior: NotificationState, healthy: bool) -> tuple[NotificationState, Action]:
    if not healthy:
        if prior is NotificationState.UNHEALTHY:
            return NotificationState.UNHEALTHY, Action.NONE
        return NotificationState.UNHEALTHY, Action.ALERT
    if prior is NotificationState.UNHEALTHY:
        return NotificationState.HEALTHY, Action.RESOLVE
    return NotificationState.HEALTHY, Action.NONE


class NotificationStateStore:
    """
    Last known notification state per target title, kept in memory only.

    Each title has its own lock, so transitions for one title are serialized
    while different titles never wait on each other. A restart forgets all
    state and may re-alert or miss a resolution.
    """

    def __init__(self) -> None:
        self._states: dict[str, NotificationState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, title: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(title)
            if lock is None:
                lock = threading.Lock()
                self._locks[title] = lock
            return lock

    def get(self, title: str) -> NotificationState:
        return self._states.get(title, NotificationState.UNSET)

    def transition(self, title: str, healthy: bool) -> Action:
        with self._lock_for(title):
            state, action = next_state(self.get(title), healthy)
            self._states[title] = state
            return action


class Sender(Protocol):
    async def send(self, result: Result, severity: str) -> None: ...


class Notifier(Protocol):
    async def notify(self, results: Iterable[Result]) -> None: ...


class Debouncer:
    """Sends an alert when a target turns unhealthy and a resolution when it recovers."""

    def __init__(self, sender: Sender, store: NotificationStateStore | None = None) -> None:
        self.sender = sender
        self.store = store if store is not None else NotificationStateStore()

    async def notify(self, results: Iterable[Result]) -> None:
        for result in results:
            action = self.store.transition(result.title, result.healthy)
            if action is Action.NONE:
                continue
            severity = SEVERITY_ALERT if action is Action.ALERT else SEVERITY_RESOLVED
            try:
                await self.sender.send(result, severity)
            except Exception as exc:
                LOGGER.exception(
                    "Notification failed title=%s severity=%s error=%s", result.title, severity, exc
                )
                continue
            LOGGER.info("Notification sent title=%s endpoint=%s severity=%s", result.title, result.endpoint, severity)
