"""
Logging configuration for the ad pipeline.

Environment variables:
- LOG_LEVEL: Root level (default: INFO)
- LOG_FORMAT: "structured" (default) or "simple"
- LOG_LEVEL_PIPELINE / _PROVIDERS / _CACHE / _RETRY / _API: Per-area overrides,
  e.g. LOG_LEVEL_PROVIDERS=DEBUG to see every provider request

Records logged with ``extra={"job_id": ...}`` get the job id appended
in structured format, so one run can be followed with grep.
"""

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from talkar.config import Settings


# Settings field suffix -> logger name
MODULE_LOGGERS = {
    "pipeline": "talkar.services.pipeline",
    "providers": "talkar.services.providers",
    "cache": "talkar.services.pipeline.stage_cache",
    "retry": "talkar.services.retry",
    "api": "talkar.api",
}

# Logger name prefix -> short form shown in structured output (first match wins)
NAME_PREFIXES = (
    ("talkar.services.pipeline.", "pipeline."),
    ("talkar.services.providers.", "providers."),
    ("talkar.services.", ""),
    ("talkar.api.", "api."),
    ("talkar.", ""),
)

# Third-party loggers that only add noise at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "watchfiles")

SIMPLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def short_name(logger_name: str) -> str:
    """Strip the package prefix from a logger name."""
    for prefix, replacement in NAME_PREFIXES:
        if logger_name.startswith(prefix):
            return replacement + logger_name[len(prefix):]
    return logger_name


class StructuredFormatter(logging.Formatter):
    """
    Pipe-separated formatter.

    Format: timestamp | level | logger | message [job=<id>]
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        message = (
            f"{timestamp} | "
            f"{record.levelname:8} | "
            f"{short_name(record.name):28} | "
            f"{record.getMessage()}"
        )

        job_id = getattr(record, "job_id", None)
        if job_id:
            message += f" [job={job_id}]"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for LOG_FORMAT (unknown values fall back to simple)."""
    if log_format == "structured":
        return StructuredFormatter()
    return logging.Formatter(SIMPLE_FORMAT)


def setup_logging(settings: "Settings") -> None:
    """
    Configure the root logger once at startup.

    Replaces existing root handlers with a single stdout handler, then
    applies per-area overrides.

    Args:
        settings: Application settings with log configuration
    """
    root_level = _parse_level(settings.log_level, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(settings.log_format))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    for module_key, logger_name in MODULE_LOGGERS.items():
        override = getattr(settings, f"log_level_{module_key}", None)
        if override:
            logging.getLogger(logger_name).setLevel(_parse_level(override, root_level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _parse_level(value: str, default: int) -> int:
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default
