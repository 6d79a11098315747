from __future__ import annotations

import logging
from typing import Optional

_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    from rebg.config import settings

    level_name = (level or settings.log_level or "INFO").upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Idempotent: keep a single stream handler on repeated calls.
    for handler in root.handlers:
        if getattr(handler, "_rebg_handler", False):
            return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._rebg_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # PIL is chatty at DEBUG (plugin discovery).
    logging.getLogger("PIL").setLevel(logging.INFO)
