from __future__ import annotations

import abc
from typing import List

from ..models import OfflineChat, OfflineMessage


class OfflineStore(abc.ABC):
    """On-device store: the pending-message queue plus the chat/message cache.

    Implementations read through to their backend on every call; failures are
    raised as ``StorageError``.
    """

    backend_name: str = "unknown"

    # Pending queue
    @abc.abstractmethod
    async def enqueue(self, message: OfflineMessage) -> None:
        """Insert or overwrite the entry keyed by ``message.id``."""
        ...

    @abc.abstractmethod
    async def list_all(self) -> List[OfflineMessage]:
        ...

    @abc.abstractmethod
    async def remove(self, message_id: str) -> None:
        """Delete the entry if present; absent ids are a no-op."""
        ...

    # Chat cache
    @abc.abstractmethod
    async def save_chat(self, chat: OfflineChat) -> None:
        ...

    @abc.abstractmethod
    async def get_chats(self) -> List[OfflineChat]:
        ...

    @abc.abstractmethod
    async def delete_chat(self, chat_id: str) -> None:
        ...

    @abc.abstractmethod
    async def sync_chats_from_server(self, chats: List[OfflineChat]) -> None:
        ...

    # Message cache
    @abc.abstractmethod
    async def save_message(self, message: OfflineMessage) -> None:
        ...

    @abc.abstractmethod
    async def get_messages(self, chat_id: str) -> List[OfflineMessage]:
        ...

    @abc.abstractmethod
    async def sync_messages_from_server(self, chat_id: str, messages: List[OfflineMessage]) -> None:
        ...

    def close(self) -> None:
        return None
