import asyncio
from typing import Dict, Iterable, List, Optional, Set

from ..errors import RemoteWriteError
from ..models import OfflineMessage
from .base import RemoteMessageWriter


class MockMessageWriter(RemoteMessageWriter):
    """In-memory remote table keyed by message id.

    ``fail_ids`` lists ids whose writes raise; ``delay`` simulates latency so
    tests can observe overlapping calls through ``max_in_flight``.
    """

    provider_name: str = "mock"

    def __init__(self, fail_ids: Optional[Iterable[str]] = None, delay: float = 0.0):
        self.rows: Dict[str, Dict] = {}
        self.calls: List[str] = []
        self.fail_ids: Set[str] = set(fail_ids or [])
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def write_message(
        self,
        message: OfflineMessage,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> None:
        self.calls.append(message.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if message.id in self.fail_ids:
                raise RemoteWriteError(message.id, "mock failure", status_code=503)
            # Idempotent on id
            self.rows.setdefault(message.id, message.to_remote_row(user_id))
        finally:
            self.in_flight -= 1
