"""Logging for the BudgetWise service.

The ``budgetwise`` logger carries a console handler and, when audit logging
is enabled, a JSON-lines file handler. Request log lines carry the HTTP
method, path, status, latency and the authenticated user so the audit file
can be filtered per user.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

CONSOLE_FORMAT: Final[str] = "[%(levelname)s] %(name)s: %(message)s"
DEFAULT_LEVEL: Final[str] = "INFO"
LOG_PATH: Final[Path] = Path("logs") / "budgetwise.log"
ROOT_LOGGER: Final[str] = "budgetwise"
REQUEST_FIELDS: Final[tuple[str, ...]] = ("method", "path", "status_code", "process_time_ms", "user_id")


class JsonAuditFormatter(logging.Formatter):
    """One JSON object per record, request fields always present."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "source": record.name,
            "message": record.getMessage(),
        }
        payload.update({name: getattr(record, name, None) for name in REQUEST_FIELDS})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def parse_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level or DEFAULT_LEVEL).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _tagged(logger: logging.Logger, tag: str) -> logging.Handler | None:
    for handler in logger.handlers:
        if getattr(handler, "_budgetwise_tag", None) == tag:
            return handler
    return None


def _attach(logger: logging.Logger, handler: logging.Handler, tag: str) -> logging.Handler:
    handler._budgetwise_tag = tag  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return handler


def setup_logger(
    name: str = ROOT_LOGGER,
    json_format: bool = False,
    level: str | int | None = None,
    log_path: Path = LOG_PATH,
) -> logging.Logger:
    """Configure ``name`` and return it.

    Repeated calls reuse the tagged handlers. Their level is refreshed and the
    audit file handler is added or closed to follow ``json_format``.
    """

    resolved = parse_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(resolved)
    # Propagate so pytest's caplog still sees our records.
    logger.propagate = True

    console = _tagged(logger, "console")
    if console is None:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        _attach(logger, console, "console")
    console.setLevel(resolved)

    audit = _tagged(logger, "json")
    if json_format and audit is None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        audit = logging.FileHandler(log_path, encoding="utf-8")
        audit.setFormatter(JsonAuditFormatter())
        _attach(logger, audit, "json")
    elif not json_format and audit is not None:
        logger.removeHandler(audit)
        audit.close()
        audit = None
    if audit is not None:
        audit.setLevel(resolved)
    return logger


def log_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    elapsed_ms: float,
    user_id: int | None = None,
) -> None:
    logger.info(
        "%s %s -> %s (%.1f ms)",
        method,
        path,
        status_code,
        elapsed_ms,
        extra={
            "method": method,
            "path": path,
            "status_code": status_code,
            "process_time_ms": round(elapsed_ms, 3),
            "user_id": user_id,
        },
    )


def configure_cli_logging(json_logs: bool, level: str | int | None = None) -> logging.Logger:
    """Point the package logger at the level and format chosen on the command line."""

    return setup_logger(ROOT_LOGGER, json_format=json_logs, level=level)


__all__ = ["JsonAuditFormatter", "configure_cli_logging", "log_request", "parse_level", "setup_logger"]
