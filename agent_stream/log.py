from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# chatty at INFO: one line per streamed request
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Install stream (and optional file) handlers for applications and examples."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper()), format=LOG_FORMAT, handlers=handlers, force=True
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))
