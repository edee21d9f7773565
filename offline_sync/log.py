import json
import logging
import os
from typing import Any


def get_logger(name: str) -> logging.Logger:
    """Return a logger that emits one JSON line per event under Uvicorn or tests.

    - honor LOG_LEVEL env (default INFO)
    - attach a StreamHandler if none present
    - disable propagate to avoid duplicate logs with Uvicorn root handlers
    """
    logger = logging.getLogger(name)
    try:
        _lvl_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        _lvl = getattr(logging, _lvl_name, logging.INFO)
    except Exception:
        _lvl = logging.INFO
    logger.setLevel(_lvl)
    if not logger.handlers:
        _h = logging.StreamHandler()
        _h.setLevel(_lvl)
        _h.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(_h)
    logger.propagate = False
    return logger


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    try:
        logger.log(level, json.dumps({"event": event, **fields}, default=str))
    except Exception:
        # Never fail the caller on logging errors
        pass
