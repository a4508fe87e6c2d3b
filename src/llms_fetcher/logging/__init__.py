from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Protocol

from llms_fetcher.config.models import LoggingSettings

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogSink(Protocol):
    """
    The narrow logging capability handed to the controller and the scheduler.

    A ``logging.Logger`` satisfies it.
    """

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


def init_logging(settings: LoggingSettings) -> None:
    """
    Configure the root logger: always a stream handler, plus a daily rotating file
    handler when ``settings.file.path`` is set.
    """

    root_logger = logging.getLogger()

    level = logging.getLevelNamesMapping().get(settings.level.upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {settings.level}")

    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    # aiohttp's access/internal loggers are noisy at DEBUG.
    logging.getLogger("aiohttp").setLevel(max(level, logging.INFO))

    file_path = settings.file.path.strip()
    if not file_path:
        return

    try:
        log_path = Path(file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = TimedRotatingFileHandler(
            filename=str(log_path),
            when="midnight",
            interval=1,
            backupCount=settings.file.rotation.backup_count,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError:
        root_logger.error(
            "File logging handler failed to initialize. path=%s",
            file_path,
            exc_info=True,
        )


__all__ = ["LogSink", "init_logging"]
