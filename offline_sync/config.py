import os
from dataclasses import dataclass

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    try:
        v = os.getenv(name, "1" if default else "0").strip().lower()
        return v in ("1", "true", "yes", "on")
    except Exception:
        return default


@dataclass
class SyncSettings:
    store_backend: str = "sqlite"
    db_path: str = "./wiser-offline.db"
    remote_provider: str = "supabase"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    remote_timeout_seconds: float = 10.0
    online_delay_seconds: float = 1.0
    assume_online: bool = True
    notifications_keep: int = 50

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Read settings from the environment at call time.

        Malformed numbers and booleans fall back to their defaults.
        """
        return cls(
            store_backend=(_env_str("SYNC_STORE_BACKEND") or "sqlite").lower(),
            db_path=_env_str("SYNC_DB_PATH") or "./wiser-offline.db",
            remote_provider=(_env_str("SYNC_REMOTE_PROVIDER") or "supabase").lower(),
            supabase_url=_env_str("SUPABASE_URL"),
            supabase_anon_key=_env_str("SUPABASE_ANON_KEY"),
            remote_timeout_seconds=max(0.1, _env_float("SYNC_REMOTE_TIMEOUT_SECONDS", 10.0)),
            online_delay_seconds=max(0.0, _env_float("SYNC_ONLINE_DELAY_SECONDS", 1.0)),
            assume_online=_env_bool("SYNC_ASSUME_ONLINE", True),
            notifications_keep=max(1, _env_int("SYNC_NOTIFICATIONS_KEEP", 50)),
        )
