"""Background wake signal.

Bridges the host's background-sync facility (a service worker in the browser
build) to the reconciliation worker. Registration is advisory: when the host
cannot do background sync, reconciliation still happens on the next online
transition or app start.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set

from ._async import spawn_if_awaitable
from .errors import UnsupportedPlatformError
from .log import get_logger, log_event

logger = get_logger("wiser.offline.wake")

SYNC_TAG = "sync-messages"
SYNC_MESSAGE_TYPE = "SYNC_MESSAGES"

PostMessage = Callable[[Dict[str, Any]], Any]


class BackgroundSyncRegistry:
    """In-process host facility that mirrors the service worker's sync handling.

    ``register`` records a background-sync tag. ``dispatch`` plays the host's
    ``sync`` event: for a registered ``sync-messages`` tag every attached
    client is posted a ``SYNC_MESSAGES`` message.
    """

    def __init__(self, supported: bool = True):
        self.supported = supported
        self._tags: Set[str] = set()
        self._clients: Dict[int, PostMessage] = {}
        self._next_token = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def tags(self) -> Set[str]:
        return set(self._tags)

    def register(self, tag: str) -> None:
        if not self.supported:
            raise UnsupportedPlatformError("background sync is not available on this host")
        self._tags.add(tag)

    def attach_client(self, post_message: PostMessage) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._clients[token] = post_message

        def detach() -> None:
            self._clients.pop(token, None)

        return detach

    def dispatch(self, tag: str) -> int:
        """Fire a background sync event; returns how many clients were posted."""
        if tag != SYNC_TAG or tag not in self._tags:
            log_event(logger, logging.DEBUG, "background_sync_ignored", tag=tag)
            return 0
        notified = 0
        for post in list(self._clients.values()):
            try:
                spawn_if_awaitable(post({"type": SYNC_MESSAGE_TYPE}), self._tasks)
                notified += 1
            except Exception as e:
                log_event(logger, logging.WARNING, "background_sync_client_error", error=str(e))
        return notified


class BackgroundWakeSignal:
    def __init__(self, facility: Optional[BackgroundSyncRegistry] = None):
        self._facility = facility
        self._callback: Optional[Callable[[], Any]] = None
        self._detach: Optional[Callable[[], None]] = None
        self._tasks: Set[asyncio.Task] = set()

    def register_wake_callback(self, callback: Callable[[], Any]) -> bool:
        """Best-effort registration; returns False when the host declined."""
        self._callback = callback
        if self._facility is None:
            log_event(logger, logging.DEBUG, "background_sync_unsupported", reason="no_facility")
            return False
        # Host messages reach the callback even if tag registration is refused
        if self._detach is None and hasattr(self._facility, "attach_client"):
            self._detach = self._facility.attach_client(self.handle_host_message)
        try:
            self._facility.register(SYNC_TAG)
        except UnsupportedPlatformError as e:
            log_event(logger, logging.DEBUG, "background_sync_unsupported", reason=str(e))
            return False
        log_event(logger, logging.INFO, "background_sync_registered", tag=SYNC_TAG)
        return True

    def handle_host_message(self, data: Any) -> bool:
        """Invoke the wake callback for a ``SYNC_MESSAGES`` host message."""
        if not isinstance(data, dict) or data.get("type") != SYNC_MESSAGE_TYPE:
            return False
        if self._callback is None:
            return False
        spawn_if_awaitable(self._callback(), self._tasks)
        return True

    def close(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None
        self._callback = None
