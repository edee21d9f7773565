from __future__ import annotations

import abc
import asyncio
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, List, Set

from .log import get_logger, log_event

logger = get_logger("wiser.offline.notifications")


class NotificationSink(abc.ABC):
    """Fire-and-forget user-facing status messages (toasts)."""

    @abc.abstractmethod
    def notify(self, title: str, description: str) -> None:
        ...


class InMemoryNotificationSink(NotificationSink):
    """Keeps the most recent notifications and fans them out to listeners.

    Listeners are ``asyncio.Queue`` objects obtained from ``listen``; the SSE
    stream drains one per connected client.
    """

    def __init__(self, keep: int = 50):
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=max(1, keep))
        self._listeners: Set[asyncio.Queue] = set()

    def notify(self, title: str, description: str) -> None:
        item = {"title": title, "description": description, "ts": int(time.time() * 1000)}
        self._recent.append(item)
        log_event(logger, logging.INFO, "notification", title=title, description=description)
        for q in list(self._listeners):
            try:
                q.put_nowait(item)
            except asyncio.QueueFull:
                log_event(logger, logging.WARNING, "notification_listener_full")

    def recent(self) -> List[Dict[str, Any]]:
        return list(self._recent)

    def listen(self, maxsize: int = 100) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._listeners.add(q)
        return q

    def unlisten(self, q: asyncio.Queue) -> None:
        self._listeners.discard(q)
