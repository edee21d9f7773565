from dataclasses import replace
from typing import Dict, List

from ..models import OfflineChat, OfflineMessage
from .base import OfflineStore


class MemoryOfflineStore(OfflineStore):
    """Process-local store for tests and ephemeral runs. Not durable."""

    backend_name: str = "memory"

    def __init__(self):
        self._pending: Dict[str, OfflineMessage] = {}
        self._chats: Dict[str, OfflineChat] = {}
        self._messages: Dict[str, OfflineMessage] = {}

    async def enqueue(self, message: OfflineMessage) -> None:
        self._pending[message.id] = message.with_pending(True)

    async def list_all(self) -> List[OfflineMessage]:
        return list(self._pending.values())

    async def remove(self, message_id: str) -> None:
        self._pending.pop(message_id, None)

    async def save_chat(self, chat: OfflineChat) -> None:
        self._chats[chat.id] = chat

    async def get_chats(self) -> List[OfflineChat]:
        return sorted(self._chats.values(), key=lambda c: c.sort_key(), reverse=True)

    async def delete_chat(self, chat_id: str) -> None:
        self._chats.pop(chat_id, None)
        for mid in [m.id for m in self._messages.values() if m.chat_id == chat_id]:
            del self._messages[mid]

    async def sync_chats_from_server(self, chats: List[OfflineChat]) -> None:
        for chat in chats:
            self._chats[chat.id] = chat

    async def save_message(self, message: OfflineMessage) -> None:
        self._messages[message.id] = message.with_pending(False)

    async def get_messages(self, chat_id: str) -> List[OfflineMessage]:
        msgs = [m for m in self._messages.values() if m.chat_id == chat_id]
        return sorted(msgs, key=lambda m: m.sort_key())

    async def sync_messages_from_server(self, chat_id: str, messages: List[OfflineMessage]) -> None:
        for m in messages:
            self._messages[m.id] = replace(m, chat_id=chat_id, pending=False)
