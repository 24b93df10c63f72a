import io
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
_MAX_BYTES = 5_000_000
_BACKUP_COUNT = 5


class UtcMsFormatter(logging.Formatter):
    """Timestamps in UTC with milliseconds, matching the tick times in messages."""

    def formatTime(self, record, datefmt=None):
        ct = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return ct.strftime("%Y-%m-%d %H:%M:%S") + f".{int(record.msecs):03d}Z"


def setup_logger(
    name: str,
    log_path: Optional[str | Path] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Console logging for *name*, plus a rotating file when *log_path* is given.
    Calling it twice for the same name does not duplicate handlers.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    formatter = UtcMsFormatter(_FORMAT)

    # force UTF-8 on consoles that default to a legacy code page
    if hasattr(sys.stdout, "buffer"):
        stream = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
    else:
        stream = sys.stdout
    console = logging.StreamHandler(stream)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_path is not None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
