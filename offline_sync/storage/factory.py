from typing import Optional

from ..config import SyncSettings
from .base import OfflineStore
from .memory import MemoryOfflineStore
from .sqlite import SqliteOfflineStore


def get_offline_store(settings: Optional[SyncSettings] = None, backend: Optional[str] = None) -> OfflineStore:
    """Return a store based on settings or an explicit override.

    Backend precedence:
      - explicit ``backend`` argument
      - SYNC_STORE_BACKEND
      - defaults to 'sqlite'
    Unknown backends fall back to sqlite so queued messages stay durable.
    """
    cfg = settings or SyncSettings.from_env()
    name = (backend or cfg.store_backend or "sqlite").lower()

    if name in ("memory", "mock", "test"):
        return MemoryOfflineStore()

    return SqliteOfflineStore(cfg.db_path)
