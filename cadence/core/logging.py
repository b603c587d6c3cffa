"""
Process-wide logging setup.

Stdout only; gunicorn (see gunicorn.conf.py) writes its access and error
logs to the same stream, so the platform captures everything in one place.
"""
from __future__ import annotations

import logging
import sys
from typing import Optional

from cadence.core.config import settings

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a single stdout handler to the root logger (idempotent)."""
    global _configured
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    _configured = True
