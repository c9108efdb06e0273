"""
ShopFloor Inventory - Structured Logging Configuration

JSON (or plain text) application logs plus a separate audit log for stock
events. The audit log complements the inventory_history table: history rows
are the business record, audit lines are the operational trail.

Usage:
    from app.logging_config import get_logger, audit_log

    logger = get_logger(__name__)
    logger.info("Loaded snapshot", extra={"items": 42})

    audit_log("STOCK_RECEIVED", user_id=user_id, resource_type="inventory",
              resource_id=item_id, details={"received_quantity": "10"})
"""
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.settings import settings

# LogRecord attributes that are not caller-supplied `extra` fields
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
})


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:

    {"timestamp": "...", "level": "WARNING",
     "logger": "app.services.inventory_reconciliation",
     "message": "reconcile_job failed for item ...", "job_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.levelno >= logging.ERROR:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in _extra_fields(record).items():
            # Decimals and datetimes end up as strings
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """
    Human-readable lines for local development:

    2026-01-01 12:00:00 [INFO] app.main: Database tables ready store=database
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{timestamp} [{record.levelname}] {record.name}: {record.getMessage()}"

        extras = [f"{key}={value}" for key, value in _extra_fields(record).items()]
        if extras:
            line += " " + " ".join(extras)

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


class AuditFormatter(logging.Formatter):
    """
    Audit lines with fixed keys:

    {"timestamp": "...", "event": "JOB_RECONCILED", "user_id": "<uuid>",
     "resource_type": "job", "resource_id": "<uuid>",
     "details": {"succeeded": [...], "failed": [], "skipped": []}}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": getattr(record, "event", record.getMessage()),
            "user_id": getattr(record, "user_id", None),
            "resource_type": getattr(record, "resource_type", None),
            "resource_id": getattr(record, "resource_id", None),
            "details": getattr(record, "details", {}),
            "ip_address": getattr(record, "ip_address", None),
        }
        log_data = {k: v for k, v in log_data.items() if v is not None}
        return json.dumps(log_data, default=str)


def setup_logging() -> None:
    """
    Configure application logging from settings.

    Call once at startup (the FastAPI lifespan does).
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    formatter = JSONFormatter() if settings.LOG_FORMAT.lower() == "json" else TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if settings.LOG_FILE:
        _ensure_parent_dir(settings.LOG_FILE)
        file_handler = logging.handlers.RotatingFileHandler(
            settings.LOG_FILE,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    setup_audit_logging()

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def setup_audit_logging() -> None:
    """Separate `audit` logger for stock events; does not propagate to root."""
    audit_logger = logging.getLogger("audit")
    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()
    audit_logger.propagate = False

    if settings.AUDIT_LOG_FILE:
        _ensure_parent_dir(settings.AUDIT_LOG_FILE)
        audit_handler = logging.handlers.RotatingFileHandler(
            settings.AUDIT_LOG_FILE,
            maxBytes=50 * 1024 * 1024,  # 50 MB
            backupCount=10,
        )
        audit_handler.setFormatter(AuditFormatter())
        audit_handler.setLevel(logging.INFO)
        audit_logger.addHandler(audit_handler)

    if settings.DEBUG:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(AuditFormatter())
        audit_logger.addHandler(console_handler)


def _ensure_parent_dir(path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass __name__."""
    return logging.getLogger(name)


def audit_log(
    event: str,
    *,
    user_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[Any] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> None:
    """
    Record a stock event on the audit logger.

    Events: STOCK_ADJUSTED, STOCK_ORDERED, STOCK_RECEIVED, STOCK_ALLOCATED,
    JOB_RECONCILED, JOB_RECONCILIATION_REVERSED.

    Args:
        event: Event name
        user_id: Acting user (token subject)
        resource_type: "inventory" or "job"
        resource_id: ID of the affected row
        details: Event-specific values
        ip_address: Client address, when known
    """
    logging.getLogger("audit").info(
        event,
        extra={
            "event": event,
            "user_id": user_id,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": details or {},
            "ip_address": ip_address,
        },
    )
