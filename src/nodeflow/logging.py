import sys
from pathlib import Path
from typing import Any

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    sink: Any = None,
    file_path: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """
    Replaces loguru's default handler with nodeflow's.

    Library code only ever logs through ``loguru.logger``; applications call
    this once at startup if they want nodeflow's format.

    :param level: Minimum level, e.g. "DEBUG" or "info"
    :type level: str
    :param json_logs: Emit one JSON object per record instead of text
    :type json_logs: bool
    :param sink: Where console records go; defaults to stderr
    :param file_path: Also write rotated log files here
    :type file_path: str | None
    :param rotation: Loguru rotation rule for the log file
    :type rotation: str
    :param retention: Loguru retention rule for the log file
    :type retention: str
    """
    logger.remove()
    level = level.upper()
    sink = sink if sink is not None else sys.stderr

    logger.add(
        sink,
        format=LOG_FORMAT,
        level=level,
        colorize=not json_logs and sink is sys.stderr,
        serialize=json_logs,
    )

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            format=LOG_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            serialize=json_logs,
        )
