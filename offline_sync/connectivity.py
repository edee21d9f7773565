import asyncio
import logging
from typing import Any, Callable, Dict, Set

from ._async import spawn_if_awaitable
from .log import get_logger, log_event

logger = get_logger("wiser.offline.connectivity")

StatusCallback = Callable[[bool], Any]


class ConnectivityObserver:
    """Pass-through over the host's online/offline events.

    The host reports status via ``set_online``; subscribers are told only on
    transitions. No probing or polling happens here.
    """

    def __init__(self, online: bool = True):
        self._online = bool(online)
        self._subscribers: Dict[int, StatusCallback] = {}
        self._next_token = 0
        self._tasks: Set[asyncio.Task] = set()

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def set_online(self, online: bool) -> bool:
        """Record host status; returns True when this was a transition."""
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        log_event(logger, logging.INFO, "connectivity_changed", online=online)
        # Copy so callbacks may unsubscribe while we iterate
        for token, cb in list(self._subscribers.items()):
            if token not in self._subscribers:
                continue
            try:
                spawn_if_awaitable(cb(online), self._tasks)
            except Exception as e:
                log_event(logger, logging.WARNING, "connectivity_subscriber_error", error=str(e))
        return True
