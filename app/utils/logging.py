import logging
import sys
import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from app.config.settings import settings
from app.utils.context import get_request_id

# Values every record carries, so the formats can always render them
DEFAULT_EXTRA = {"request_id": "app", "job": "-"}

# Third-party loggers routed through loguru, with the level they are capped at
INTERCEPTED_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.INFO,
    "fastapi": logging.INFO,
    "celery": logging.INFO,
    "celery.app.trace": logging.INFO,
    "httpx": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Forwards stdlib logging records (uvicorn, celery, httpx, sqlalchemy) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        log = logger.bind(request_id=get_request_id() or DEFAULT_EXTRA["request_id"])
        log.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class CustomizeLogger:
    @classmethod
    def make_logger(cls, config_path: Path, environment: str = "logger"):
        config = cls.load_logging_config(config_path)
        sink_config = config.get(environment, config.get("logger"))
        return cls.customize_logging(sink_config)

    @classmethod
    def customize_logging(cls, sink_config: Dict[str, Any]):
        level = sink_config.get("level", "info").upper()
        filename = f"{date.today().strftime('%Y-%m-%d')}-{sink_config.get('filename')}"

        logger.remove()
        logger.configure(extra=DEFAULT_EXTRA)

        # Console
        logger.add(
            sys.stdout,
            enqueue=True,
            backtrace=True,
            level=level,
            format=sink_config.get("console_format"),
            colorize=True,
        )

        # Rotating file, serialized to JSON lines in production
        file_options = {
            "rotation": sink_config.get("rotation"),
            "retention": sink_config.get("retention"),
            "enqueue": True,
            "backtrace": True,
            "level": level,
            "colorize": False,
        }
        if sink_config.get("use_json_logs", False):
            file_options["serialize"] = True
        else:
            file_options["format"] = sink_config.get("file_format")
        logger.add(str(Path(sink_config.get("log_dir", "logs")) / filename), **file_options)

        cls.intercept_standard_logging()
        return logger

    @staticmethod
    def intercept_standard_logging() -> None:
        """Route stdlib logging to loguru; also called from the Celery worker setup."""
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

        for log_name, log_level in INTERCEPTED_LOGGERS.items():
            std_logger = logging.getLogger(log_name)
            std_logger.handlers = [InterceptHandler()]
            std_logger.setLevel(log_level)
            std_logger.propagate = False

    @staticmethod
    def load_logging_config(config_path: Path):
        with open(config_path) as config_file:
            return json.load(config_file)


config_path = Path(__file__).resolve().parents[2] / "logging_config.json"
environment = "production" if settings.ENVIRONMENT == "production" else "logger"
custom_logger = CustomizeLogger.make_logger(config_path, environment)


def get_logger(request_id: Optional[str] = None, **extra):
    """
    Logger bound to a request or tick id.

    Without an explicit ``request_id`` the id of the current context is
    used. Extra keyword arguments (e.g. ``job``) are bound as well.
    """
    return custom_logger.bind(
        request_id=request_id or get_request_id() or DEFAULT_EXTRA["request_id"],
        **extra,
    )
