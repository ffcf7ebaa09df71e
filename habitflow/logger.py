import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_installed: List[logging.Handler] = []


def setup_logging(level: str = "INFO", log_file: Optional[str] = None,
                  max_bytes: int = 10_000_000, backup_count: int = 5) -> logging.Logger:
    logger = logging.getLogger()
    logger.setLevel(level.upper())
    formatter = logging.Formatter(LOG_FORMAT)

    # calling again replaces the handlers from the previous call
    while _installed:
        handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)
    _installed.append(console)

    if log_file:
        Path(log_file).parent.mkdir(exist_ok=True, parents=True)
        handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _installed.append(handler)
    return logger
