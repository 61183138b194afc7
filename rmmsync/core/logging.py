from __future__ import annotations

import logging

from rmmsync.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure root logging once; API, worker and scripts all call this on startup.
    global _configured
    resolved = (level or get_settings().log_level).upper()
    if _configured:
        logging.getLogger().setLevel(resolved)
        return
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    # httpx logs every request at INFO; keep it at WARNING unless debugging.
    if resolved != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
