from __future__ import annotations

import logging

from streamhub.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Idempotent: repeated create_app() calls only adjust the level.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # httpx logs every request line at INFO, which would echo provider URLs.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
