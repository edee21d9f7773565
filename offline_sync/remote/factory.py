import logging
from typing import Optional

from ..config import SyncSettings
from ..log import get_logger, log_event
from .base import RemoteMessageWriter
from .mock import MockMessageWriter

logger = get_logger("wiser.offline.remote")


def get_remote_writer(settings: Optional[SyncSettings] = None, provider: Optional[str] = None) -> RemoteMessageWriter:
    """Return a remote writer based on settings or an explicit override.

    Provider precedence:
      - explicit ``provider`` argument
      - SYNC_REMOTE_PROVIDER
      - defaults to 'supabase'
    Falls back to the mock writer when SUPABASE_URL is missing.
    """
    cfg = settings or SyncSettings.from_env()
    prov = (provider or cfg.remote_provider or "supabase").lower()

    if prov in ("mock", "test"):
        return MockMessageWriter()

    if prov in ("supabase", "postgrest"):
        try:
            from .supabase import SupabaseMessageWriter
            return SupabaseMessageWriter(
                cfg.supabase_url,
                cfg.supabase_anon_key,
                timeout=cfg.remote_timeout_seconds,
            )
        except RuntimeError as e:
            log_event(logger, logging.WARNING, "remote_writer_fallback", provider=prov, error=str(e))
            return MockMessageWriter()

    # Unknown -> mock
    return MockMessageWriter()
