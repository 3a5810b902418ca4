"""FastMCP server entry point for the request desk."""

from __future__ import annotations

import contextvars
import json
import logging
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastmcp import FastMCP

from request_desk.config_schema import RuntimeSettings
from request_desk.db import default_user_config_dir, desk_lifespan
from request_desk.store import format_timestamp

CONSOLE_HANDLER_NAME = "request_desk.console"
LOGFILE_HANDLER_NAME = "request_desk.logfile"
LOGFILE_NAME = "desk.jsonl"

mcp = FastMCP(
    "request-desk",
    instructions=(
        "Request desk for website update requests. "
        "Clients submit requests, admins triage and assign reviewers, "
        "reviewers approve or request changes. Pass your user_id on every call."
    ),
    lifespan=desk_lifespan,
)

# User id of the caller whose tool call is running; "desk" outside tool calls.
caller_tag: contextvars.ContextVar[str] = contextvars.ContextVar("caller_tag", default="desk")

# Tools register themselves on `mcp`, so this import follows its creation.
from request_desk import tools  # noqa: F401, E402


class _CallerTagFilter(logging.Filter):
    """Stamp every record with the current caller tag."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.caller_tag = caller_tag.get()  # type: ignore[attr-defined]
        return True


class _JsonLinesFormatter(logging.Formatter):
    """One compact JSON object per record, timed by the record itself."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": format_timestamp(datetime.fromtimestamp(record.created, UTC)),
            "level": record.levelname.lower(),
            "logger": record.name,
            "caller_tag": getattr(record, "caller_tag", caller_tag.get()),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, separators=(",", ":"))


def _log_dir(settings: RuntimeSettings) -> Path:
    if settings.log_dir is not None:
        return settings.log_dir.expanduser()
    return default_user_config_dir() / "desk-logs"


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.set_name(CONSOLE_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(caller_tag)s] %(message)s", "%H:%M:%S"))
    return handler


def _logfile_handler(settings: RuntimeSettings) -> logging.Handler:
    log_dir = _log_dir(settings)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / LOGFILE_NAME,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backups,
        encoding="utf-8",
    )
    handler.set_name(LOGFILE_HANDLER_NAME)
    handler.setFormatter(_JsonLinesFormatter())
    return handler


def _configure_logging(settings: RuntimeSettings | None = None) -> None:
    """Attach the console and rotating logfile handlers once."""
    settings = settings if settings is not None else RuntimeSettings.from_env()
    logger = logging.getLogger("request_desk")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    present = {handler.get_name() for handler in logger.handlers}
    if CONSOLE_HANDLER_NAME not in present:
        logger.addHandler(_console_handler())
    if LOGFILE_HANDLER_NAME not in present:
        logger.addHandler(_logfile_handler(settings))

    for handler in logger.handlers:
        if not any(isinstance(f, _CallerTagFilter) for f in handler.filters):
            handler.addFilter(_CallerTagFilter())


def main() -> None:
    """Run the desk server over streamable HTTP.

    Settings come from DESK_* environment variables (see RuntimeSettings).
    The SQLite file defaults to request_desk.sqlite3 in the user config dir
    and DESK_DB_PATH overrides it.
    """
    settings = RuntimeSettings.from_env()
    _configure_logging(settings)
    mcp.run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        log_level=settings.uvicorn_log_level,
        stateless_http=True,
    )


if __name__ == "__main__":
    main()
