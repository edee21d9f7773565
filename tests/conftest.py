import sys
import os
from pathlib import Path

# Ensure project root is on sys.path for `import offline_sync.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Default: in-memory store and mock remote unless a test opts in
os.environ.setdefault("SYNC_STORE_BACKEND", "memory")
os.environ.setdefault("SYNC_REMOTE_PROVIDER", "mock")
os.environ.setdefault("SYNC_ONLINE_DELAY_SECONDS", "0")
