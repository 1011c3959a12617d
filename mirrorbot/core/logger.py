"""
Structured logging for the mirror bot
structlog on top of stdlib logging, JSON in production and a console renderer for terminals
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog
from structlog.typing import EventDict, Processor


def add_timestamp(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every event with an ISO-8601 UTC time"""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_log_level(logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = method_name
    return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "console",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structlog and the stdlib root logger

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        format: "json" or "console"
        output_file: Optional file that receives a copy of every record
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    if output_file:
        log_path = Path(output_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(output_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        root.addHandler(file_handler)

    # websockets and aiohttp are chatty at DEBUG
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        add_log_level,
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to `name` (usually __name__)"""
    return structlog.get_logger(name)
