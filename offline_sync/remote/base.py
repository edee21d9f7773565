from __future__ import annotations

import abc
from typing import Optional

from ..models import OfflineMessage


class RemoteMessageWriter(abc.ABC):
    """Idempotent insert of one message into the hosted ``messages`` table.

    Implementations return normally on success (including "row already
    exists") and raise ``RemoteWriteError`` otherwise.
    """

    provider_name: str = "unknown"

    @abc.abstractmethod
    async def write_message(
        self,
        message: OfflineMessage,
        user_id: str,
        access_token: Optional[str] = None,
    ) -> None:
        ...
