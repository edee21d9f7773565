from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

MESSAGE_ROLES = ("user", "assistant")


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_message_id() -> str:
    return str(uuid.uuid4())


def _parse_ts(value: str) -> datetime:
    # Unparseable timestamps sort first
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except Exception:
        return datetime.min.replace(tzinfo=timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class OfflineMessage:
    """A chat message held on-device.

    In the pending queue ``pending`` is True and ``id`` doubles as the remote
    primary key, which makes a retried insert idempotent.
    """

    id: str
    chat_id: str
    content: str
    role: str
    created_at: str
    mode: Optional[str] = None
    pending: bool = False

    def __post_init__(self):
        if not self.id:
            raise ValueError("id is required")
        if not self.chat_id:
            raise ValueError("chatId is required")
        if self.role not in MESSAGE_ROLES:
            raise ValueError(f"role must be one of {MESSAGE_ROLES}, got {self.role!r}")
        if self.mode is not None and not isinstance(self.mode, str):
            raise ValueError("mode must be a string")

    @classmethod
    def create(cls, chat_id: str, content: str, role: str, mode: Optional[str] = None) -> "OfflineMessage":
        return cls(
            id=new_message_id(),
            chat_id=chat_id,
            content=content,
            role=role,
            mode=mode,
            created_at=utc_now_iso(),
            pending=True,
        )

    def with_pending(self, pending: bool) -> "OfflineMessage":
        return self if self.pending == pending else replace(self, pending=pending)

    def sort_key(self) -> datetime:
        return _parse_ts(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chatId": self.chat_id,
            "content": self.content,
            "role": self.role,
            "mode": self.mode,
            "createdAt": self.created_at,
            "pending": self.pending,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfflineMessage":
        return cls(
            id=str(data.get("id") or ""),
            chat_id=str(data.get("chatId") or ""),
            content=str(data.get("content") or ""),
            role=str(data.get("role") or ""),
            mode=data.get("mode"),
            created_at=str(data.get("createdAt") or utc_now_iso()),
            pending=bool(data.get("pending", False)),
        )

    def to_remote_row(self, user_id: str) -> Dict[str, Any]:
        """Row shape of the hosted ``messages`` table."""
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "content": self.content,
            "role": self.role,
            "mode": self.mode,
            "user_id": user_id,
            "created_at": self.created_at,
        }


# A message waiting in the pending queue
QueuedMessage = OfflineMessage


@dataclass(frozen=True)
class OfflineChat:
    id: str
    name: str
    mode: str
    updated_at: str
    project_id: Optional[str] = None
    is_pinned: Optional[bool] = None
    is_archived: Optional[bool] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("id is required")
        if not isinstance(self.mode, str):
            raise ValueError("mode must be a string")

    def sort_key(self) -> datetime:
        return _parse_ts(self.updated_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "mode": self.mode,
            "projectId": self.project_id,
            "updatedAt": self.updated_at,
            "isPinned": self.is_pinned,
            "isArchived": self.is_archived,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfflineChat":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            mode=data.get("mode") or "",
            updated_at=str(data.get("updatedAt") or utc_now_iso()),
            project_id=data.get("projectId"),
            is_pinned=data.get("isPinned"),
            is_archived=data.get("isArchived"),
        )


@dataclass(frozen=True)
class DrainResult:
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    skipped: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "synced": self.synced,
            "failed": self.failed,
            "skipped": self.skipped,
            "reason": self.reason,
        }
