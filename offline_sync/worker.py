from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Set

from .auth import AuthState
from .connectivity import ConnectivityObserver
from .errors import StorageError
from .log import get_logger, log_event
from .metrics import SYNC_DRAIN_SECONDS, SYNC_DRAINS_TOTAL, SYNC_MESSAGES_TOTAL, SYNC_PENDING_MESSAGES
from .models import DrainResult, OfflineMessage
from .notifications import NotificationSink
from .remote.base import RemoteMessageWriter
from .storage.base import OfflineStore
from .wake import BackgroundWakeSignal

logger = get_logger("wiser.offline.sync")

SYNCED_TITLE = "Messages Synced"


def synced_description(count: int) -> str:
    return f"{count} offline message{'s' if count > 1 else ''} synced successfully"


class ReconciliationWorker:
    """Drains the pending-message queue into the remote table.

    A drain runs only while the user is signed in and the host reports the
    device online, and never overlaps another drain: a trigger that arrives
    while one is running is dropped. Each drain works over a snapshot of the
    queue taken at its start; entries are removed only after their remote
    write succeeded, failures stay queued for the next trigger.

    Triggers: an online transition (after ``online_delay_seconds``), ``start()``
    when already online, the background wake signal, and direct calls to
    ``sync_pending_messages``.
    """

    def __init__(
        self,
        store: OfflineStore,
        remote: RemoteMessageWriter,
        connectivity: ConnectivityObserver,
        auth: AuthState,
        notifier: NotificationSink,
        *,
        wake: Optional[BackgroundWakeSignal] = None,
        online_delay_seconds: float = 1.0,
        remote_timeout_seconds: float = 10.0,
    ):
        self._store = store
        self._remote = remote
        self._connectivity = connectivity
        self._auth = auth
        self._notifier = notifier
        self._wake = wake
        self._online_delay = max(0.0, online_delay_seconds)
        self._remote_timeout = remote_timeout_seconds
        self._drain_in_progress = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._tasks: Set[asyncio.Task] = set()
        self._sleeping: Set[asyncio.Task] = set()
        self._started = False

    @property
    def drain_in_progress(self) -> bool:
        return self._drain_in_progress

    async def start(self) -> Optional[DrainResult]:
        if self._started:
            return None
        self._started = True
        self._unsubscribe = self._connectivity.subscribe(self._on_connectivity_change)
        if self._wake is not None:
            self._wake.register_wake_callback(self._on_wake)
        if self._connectivity.is_online() and self._auth.is_authenticated:
            return await self.sync_pending_messages()
        return None

    async def stop(self) -> None:
        """Detach from host signals; pending delays are cancelled, running drains finish."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._wake is not None:
            self._wake.close()
        for t in list(self._sleeping):
            t.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._started = False

    async def wait_idle(self) -> None:
        """Wait for scheduled (delayed) drains to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_connectivity_change(self, online: bool) -> None:
        if online and self._auth.is_authenticated:
            self._schedule_delayed_sync()

    def _on_wake(self) -> None:
        task = asyncio.ensure_future(self.sync_pending_messages())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_delayed_sync(self) -> None:
        task = asyncio.ensure_future(self._delayed_sync())
        self._tasks.add(task)
        self._sleeping.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _delayed_sync(self) -> None:
        task = asyncio.current_task()
        try:
            # Let a flapping connection settle before draining
            await asyncio.sleep(self._online_delay)
        finally:
            self._sleeping.discard(task)
        await self.sync_pending_messages()

    async def handle_auth_change(self) -> Optional[DrainResult]:
        """Drain right away when the user has just signed in while online."""
        if self._auth.is_authenticated and self._connectivity.is_online():
            return await self.sync_pending_messages()
        return None

    async def queue_offline_message(
        self,
        chat_id: str,
        content: str,
        role: str,
        mode: Optional[str] = None,
    ) -> str:
        message = OfflineMessage.create(chat_id, content, role, mode)
        await self._store.enqueue(message)
        log_event(logger, logging.INFO, "sync_message_queued", messageId=message.id, chatId=chat_id)
        await self._refresh_pending_gauge()
        return message.id

    async def sync_pending_messages(self) -> DrainResult:
        if not self._auth.is_authenticated:
            return self._skip("unauthenticated")
        if not self._connectivity.is_online():
            return self._skip("offline")
        if self._drain_in_progress:
            return self._skip("in_progress")

        # No await between the check above and this assignment
        self._drain_in_progress = True
        t0 = time.perf_counter()
        try:
            return await self._drain()
        except Exception as e:
            logger.exception("sync_drain_error: %s", e)
            SYNC_DRAINS_TOTAL.labels(outcome="error").inc()
            return DrainResult(reason="error")
        finally:
            self._drain_in_progress = False
            SYNC_DRAIN_SECONDS.observe(time.perf_counter() - t0)

    async def _drain(self) -> DrainResult:
        snapshot = await self._store.list_all()
        if not snapshot:
            SYNC_DRAINS_TOTAL.labels(outcome="empty").inc()
            return DrainResult()

        user_id = self._auth.user_id or ""
        access_token = self._auth.access_token
        synced = 0
        failed = 0
        log_event(logger, logging.INFO, "sync_drain_start", pending=len(snapshot))

        for message in snapshot:
            try:
                await asyncio.wait_for(
                    self._remote.write_message(message, user_id, access_token),
                    timeout=self._remote_timeout,
                )
            except Exception as e:
                failed += 1
                detail = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e)
                log_event(logger, logging.WARNING, "sync_message_failed", messageId=message.id, error=detail)
                SYNC_MESSAGES_TOTAL.labels(status="failed").inc()
                continue
            try:
                await self._store.remove(message.id)
            except StorageError as e:
                # Written remotely but still queued; the next drain rewrites it idempotently
                failed += 1
                log_event(logger, logging.WARNING, "sync_message_remove_failed", messageId=message.id, error=str(e))
                continue
            synced += 1
            SYNC_MESSAGES_TOTAL.labels(status="synced").inc()

        log_event(
            logger, logging.INFO, "sync_drain_complete",
            attempted=len(snapshot), synced=synced, failed=failed,
        )
        SYNC_DRAINS_TOTAL.labels(outcome="completed").inc()
        await self._refresh_pending_gauge()

        if synced > 0:
            try:
                self._notifier.notify(SYNCED_TITLE, synced_description(synced))
            except Exception as e:
                log_event(logger, logging.WARNING, "sync_notify_error", error=str(e))

        return DrainResult(attempted=len(snapshot), synced=synced, failed=failed)

    def _skip(self, reason: str) -> DrainResult:
        log_event(logger, logging.DEBUG, "sync_drain_skipped", reason=reason)
        SYNC_DRAINS_TOTAL.labels(outcome="skipped").inc()
        return DrainResult(skipped=True, reason=reason)

    async def _refresh_pending_gauge(self) -> None:
        try:
            SYNC_PENDING_MESSAGES.set(len(await self._store.list_all()))
        except StorageError as e:
            log_event(logger, logging.WARNING, "sync_pending_gauge_error", error=str(e))
