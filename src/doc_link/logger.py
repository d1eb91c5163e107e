import json
import logging
import os
import sys
from pathlib import Path

DEFAULT_SERVICE_LOG = Path.home() / ".local" / "state" / "doc_link" / "doc-link.log"

_TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger, msg.
    Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(log_format: str, fmt: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(datefmt=_DATE_FORMAT)
    return logging.Formatter(fmt, datefmt=_DATE_FORMAT)


def _file_handler(path: str | Path, log_format: str) -> logging.Handler:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(_formatter(log_format, _FILE_FORMAT))
    return handler


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    log_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "service" for file logging (long-running engine), "cli" for
            stderr logging.
        debug: If True, overrides every other level setting with DEBUG.
        log_file: Custom log file path (overrides LOG_FILE env var).
        log_format: "text" (default) or "json" for structured output.
        level: Level from the config file, used when LOG_LEVEL is unset.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: INFO.
        LOG_FILE: Custom log file path for service mode.
                  Default: ~/.local/state/doc_link/doc-link.log
    """
    env_level = os.getenv("LOG_LEVEL", level or "INFO").upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if mode == "service":
        # Service mode: always a file, stderr too so supervisors capture it
        final_log_file = log_file or os.getenv("LOG_FILE") or DEFAULT_SERVICE_LOG
        handlers.append(_file_handler(final_log_file, log_format))
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(log_format, _TEXT_FORMAT))
        handlers.append(stderr_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(log_format, _TEXT_FORMAT))
        handlers.append(stderr_handler)
        if log_file:
            handlers.append(_file_handler(log_file, log_format))

    logging.basicConfig(level=log_level, handlers=handlers)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("watchdog").setLevel(logging.WARNING)
