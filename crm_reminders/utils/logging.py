import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict

from loguru import logger

from crm_reminders.config.settings import settings
from crm_reminders.utils.context import get_request_id

DEFAULT_LOGGING_CONFIG = {
    "logger": {
        "log_dir": "logs",
        "filename": "crm-reminders.log",
        "level": settings.LOG_LEVEL,
        "rotation": "20 MB",
        "retention": "14 days",
        "console_format": "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{extra[request_id]}</cyan> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        "file_format": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[request_id]} | {name}:{function}:{line} - {message}",
        "use_json_logs": False,
    }
}

# Stdlib loggers whose output belongs in the same sinks as ours
STDLIB_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "celery",
    "celery.beat",
    "sqlalchemy.engine",
)


def _stamp_request_id(record):
    # Module-level loggers are bound at import; the active request or cycle wins
    request_id = get_request_id()
    if request_id:
        record["extra"]["request_id"] = request_id


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, Celery, SQLAlchemy) into loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Report the caller, not the logging module
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def load_logging_config(config_path: Path, environment: str = "logger") -> Dict[str, Any]:
    """
    The `environment` section of the JSON config, over the built-in defaults.

    A missing file, or a missing section, yields the defaults unchanged.
    """
    section = dict(DEFAULT_LOGGING_CONFIG["logger"])
    if not config_path.exists():
        return section
    with open(config_path) as config_file:
        config = json.load(config_file)
    section.update(config.get(environment) or config.get("logger") or {})
    return section


def file_sink_options(section: Dict[str, Any]) -> Dict[str, Any]:
    """Keyword arguments for the dated file sink; JSON lines when asked for."""
    options: Dict[str, Any] = {
        "sink": f"{section['log_dir']}/{date.today():%Y-%m-%d}-{section['filename']}",
        "rotation": section["rotation"],
        "retention": section["retention"],
        "level": section["level"].upper(),
        "enqueue": True,
        "backtrace": True,
        "colorize": False,
    }
    if section.get("use_json_logs") and section.get("file_format") == "json":
        options["serialize"] = True
    else:
        options["format"] = section["file_format"]
    return options


class CustomizeLogger:
    @classmethod
    def make_logger(cls, config_path: Path, environment: str = "logger"):
        section = load_logging_config(config_path, environment)

        logger.remove()
        # Records emitted outside a request or cycle still render {extra[request_id]}
        logger.configure(extra={"request_id": "app"}, patcher=_stamp_request_id)
        logger.add(
            sys.stdout,
            level=section["level"].upper(),
            format=section["console_format"],
            enqueue=True,
            backtrace=True,
            colorize=True,
        )
        logger.add(**file_sink_options(section))

        cls.intercept_stdlib_logging()
        return logger

    @staticmethod
    def intercept_stdlib_logging():
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        for name in STDLIB_LOGGERS:
            stdlib_logger = logging.getLogger(name)
            stdlib_logger.handlers = [InterceptHandler()]
            stdlib_logger.propagate = False


custom_logger = CustomizeLogger.make_logger(
    Path(settings.LOG_CONFIG_PATH),
    "production" if settings.ENVIRONMENT == "production" else "logger",
)


def get_logger():
    """Get the custom logger instance with request ID binding."""
    return custom_logger.bind(request_id=get_request_id() or "app")
