from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy import Boolean, String, Text, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import StorageError
from ..models import OfflineChat, OfflineMessage
from .base import OfflineStore

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


class PendingMessageRow(Base):
    __tablename__ = "pending_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # UUID, reused as remote PK
    chat_id: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String)
    mode: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String)
    pending: Mapped[bool] = mapped_column(Boolean, default=True)


class CachedMessageRow(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    chat_id: Mapped[str] = mapped_column(String, index=True)
    content: Mapped[str] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String)
    mode: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(String, index=True)


class ChatRow(Base):
    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    mode: Mapped[str] = mapped_column(String)
    project_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    updated_at: Mapped[str] = mapped_column(String, index=True)
    is_pinned: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    is_archived: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


def _pending_row(m: OfflineMessage) -> PendingMessageRow:
    return PendingMessageRow(
        id=m.id, chat_id=m.chat_id, content=m.content, role=m.role,
        mode=m.mode, created_at=m.created_at, pending=True,
    )


def _cached_row(m: OfflineMessage, chat_id: Optional[str] = None) -> CachedMessageRow:
    return CachedMessageRow(
        id=m.id, chat_id=chat_id or m.chat_id, content=m.content, role=m.role,
        mode=m.mode, created_at=m.created_at,
    )


def _chat_row(c: OfflineChat) -> ChatRow:
    return ChatRow(
        id=c.id, name=c.name, mode=c.mode, project_id=c.project_id,
        updated_at=c.updated_at, is_pinned=c.is_pinned, is_archived=c.is_archived,
    )


def _to_message(row: Any, pending: bool) -> OfflineMessage:
    return OfflineMessage(
        id=row.id, chat_id=row.chat_id, content=row.content, role=row.role,
        mode=row.mode, created_at=row.created_at, pending=pending,
    )


def _to_chat(row: ChatRow) -> OfflineChat:
    return OfflineChat(
        id=row.id, name=row.name, mode=row.mode, project_id=row.project_id,
        updated_at=row.updated_at, is_pinned=row.is_pinned, is_archived=row.is_archived,
    )


class SqliteOfflineStore(OfflineStore):
    """SQLite-backed store that survives process restarts.

    Each operation opens its own transaction and runs in the default executor
    so the event loop is never blocked on disk I/O. The schema is created on
    first use, so a bad path surfaces as ``StorageError`` from the first call
    rather than from the constructor.
    """

    backend_name: str = "sqlite"

    def __init__(self, db_path: str):
        self.db_path = db_path
        kwargs: dict = {"connect_args": {"check_same_thread": False}}  # Needed for SQLite
        if db_path == ":memory:":
            kwargs["poolclass"] = StaticPool
        self._engine = create_engine(f"sqlite:///{db_path}", **kwargs)
        self._session_factory = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if not self._schema_ready:
                Base.metadata.create_all(self._engine)
                self._schema_ready = True

    async def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def _call() -> T:
            try:
                self._ensure_schema()
                # Commits on success, rolls back on any exception
                with self._session_factory.begin() as session:
                    return fn(session)
            except (SQLAlchemyError, ValueError) as e:
                raise StorageError(operation, str(e)) from e

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _call)

    # Pending queue
    async def enqueue(self, message: OfflineMessage) -> None:
        await self._run("enqueue", lambda s: s.merge(_pending_row(message)))

    async def list_all(self) -> List[OfflineMessage]:
        def _list(s: Session) -> List[OfflineMessage]:
            rows = s.scalars(select(PendingMessageRow)).all()
            return [_to_message(r, pending=True) for r in rows]

        return await self._run("list_all", _list)

    async def remove(self, message_id: str) -> None:
        await self._run(
            "remove",
            lambda s: s.execute(delete(PendingMessageRow).where(PendingMessageRow.id == message_id)),
        )

    # Chat cache
    async def save_chat(self, chat: OfflineChat) -> None:
        await self._run("save_chat", lambda s: s.merge(_chat_row(chat)))

    async def get_chats(self) -> List[OfflineChat]:
        def _list(s: Session) -> List[OfflineChat]:
            return [_to_chat(r) for r in s.scalars(select(ChatRow)).all()]

        chats = await self._run("get_chats", _list)
        return sorted(chats, key=lambda c: c.sort_key(), reverse=True)

    async def delete_chat(self, chat_id: str) -> None:
        def _delete(s: Session) -> None:
            s.execute(delete(ChatRow).where(ChatRow.id == chat_id))
            s.execute(delete(CachedMessageRow).where(CachedMessageRow.chat_id == chat_id))

        await self._run("delete_chat", _delete)

    async def sync_chats_from_server(self, chats: List[OfflineChat]) -> None:
        def _sync(s: Session) -> None:
            for chat in chats:
                s.merge(_chat_row(chat))

        await self._run("sync_chats", _sync)

    # Message cache
    async def save_message(self, message: OfflineMessage) -> None:
        await self._run("save_message", lambda s: s.merge(_cached_row(message)))

    async def get_messages(self, chat_id: str) -> List[OfflineMessage]:
        def _list(s: Session) -> List[OfflineMessage]:
            rows = s.scalars(select(CachedMessageRow).where(CachedMessageRow.chat_id == chat_id)).all()
            return [_to_message(r, pending=False) for r in rows]

        msgs = await self._run("get_messages", _list)
        return sorted(msgs, key=lambda m: m.sort_key())

    async def sync_messages_from_server(self, chat_id: str, messages: List[OfflineMessage]) -> None:
        def _sync(s: Session) -> None:
            for m in messages:
                s.merge(_cached_row(m, chat_id=chat_id))

        await self._run("sync_messages", _sync)

    def close(self) -> None:
        self._engine.dispose()
