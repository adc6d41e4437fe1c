"""Tracking of when each namespace last changed, so pollers know when to refresh."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

log = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StateTracker:
    """Remembers the last state change per namespace."""

    def __init__(self, list_namespaces: Callable[[], Iterable[str]]) -> None:
        self._list_namespaces = list_namespaces
        self._changes: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def set_last_state_change_to_now(self, *args: str) -> datetime:
        """Mark the given namespaces, or all known ones, as changed now."""
        now = _utc_now()
        namespaces: Iterable[str] = args
        if not args:
            try:
                namespaces = list(self._list_namespaces())
            except Exception as exc:
                log.error(
                    "failed to fetch all namespaces, failing to update last "
                    "changed state: %s",
                    exc,
                )
                namespaces = ()
        with self._lock:
            for namespace in namespaces:
                self._changes[namespace] = now
        return now

    def get_last_state_change(self, *args: str) -> datetime:
        """Latest change among the given namespaces, or among all of them.

        When nothing is recorded for the selection, the current time is returned.
        """
        with self._lock:
            if args:
                times = [self._changes[name] for name in args if name in self._changes]
            else:
                times = list(self._changes.values())
        log.debug("Latest times %r", times)
        if not times:
            return _utc_now()
        return max(times)