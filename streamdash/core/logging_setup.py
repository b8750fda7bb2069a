from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _attach(root: logging.Logger, handler: logging.Handler, log_level: int) -> None:
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def setup_logging(level: str, logfile: str | None = None):
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)

    # Reloads must not stack handlers.
    for existing in list(root.handlers):
        root.removeHandler(existing)

    if logfile:
        Path(logfile).parent.mkdir(parents=True, exist_ok=True)
        _attach(root, logging.FileHandler(logfile, encoding="utf-8"), log_level)
    _attach(root, logging.StreamHandler(), log_level)

    for name in SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.setLevel(log_level)
        server_logger.propagate = True

    # urllib3 debug lines carry request URLs, and the Telegram bot token lives in the path.
    logging.getLogger("urllib3").setLevel(max(log_level, logging.WARNING))

    root.info("logging initialized level=%s", logging.getLevelName(log_level))
