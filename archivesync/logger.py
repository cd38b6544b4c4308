"""
Structured logging for archivesync.

Provides a logger with console and file outputs, counters for monitoring
reconciliation runs, and an explicit request-scoped context carrying the
correlation identifiers every log line of a request should include.
"""

import logging
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


@dataclass(frozen=True)
class RequestContext:
    """
    Correlation identifiers for one download request.

    Passed explicitly into every operation; ``bind`` returns a new context
    so a callee can never alter the caller's identifiers.
    """

    request_id: str
    username: Optional[str] = None
    platform: Optional[str] = None
    user_id: Optional[str] = None
    download_id: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def bind(self, **fields) -> "RequestContext":
        known = {k: v for k, v in fields.items() if k in _CONTEXT_FIELDS}
        extra = {k: v for k, v in fields.items() if k not in _CONTEXT_FIELDS}
        return replace(self, extra={**self.extra, **extra}, **known)

    def as_dict(self) -> dict:
        values = {
            "requestId": self.request_id,
            "username": self.username,
            "platform": self.platform,
            "userId": self.user_id,
            "downloadId": self.download_id,
        }
        values = {k: v for k, v in values.items() if v is not None}
        values.update(self.extra)
        return values


_CONTEXT_FIELDS = {"request_id", "username", "platform", "user_id", "download_id"}


class StructuredLogger:
    """
    Logger with support for console and file outputs.
    Tracks counters for monitoring reconciliation and fan-out.
    """

    def __init__(
        self,
        name: str = "archivesync",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers

        self.metrics = {
            "catalog_calls": 0,
            "downloads_requested": 0,
            "archives_missing": 0,
            "archives_pending": 0,
            "records_persisted": 0,
            "persist_retries": 0,
            "commands_published": 0,
            "fanout_failures": 0,
            "errors_by_kind": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"archivesync_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, ctx: Optional[RequestContext] = None, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, ctx, kwargs)

    def info(self, message: str, ctx: Optional[RequestContext] = None, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, ctx, kwargs)

    def warning(self, message: str, ctx: Optional[RequestContext] = None, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, ctx, kwargs)

    def error(self, message: str, ctx: Optional[RequestContext] = None, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, ctx, kwargs)

    def critical(self, message: str, ctx: Optional[RequestContext] = None, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, ctx, kwargs)

    def _log(self, level: int, message: str, ctx: Optional[RequestContext], context: dict):
        """Internal logging method with context."""
        fields = ctx.as_dict() if ctx is not None else {}
        fields.update(context)
        if fields:
            message = f"{message} | Context: {json.dumps(fields, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_catalog_call(self):
        """Increment remote catalog call counter."""
        self.metrics["catalog_calls"] += 1

    def record_reconciliation(self, missing: int, pending: int):
        """Record the outcome of one reconciliation."""
        self.metrics["downloads_requested"] += 1
        self.metrics["archives_missing"] += missing
        self.metrics["archives_pending"] += pending

    def record_persisted(self, count: int):
        self.metrics["records_persisted"] += count

    def record_persist_retry(self):
        self.metrics["persist_retries"] += 1

    def record_published(self):
        self.metrics["commands_published"] += 1

    def record_failure(self, kind: str):
        """Record a request failure by error kind."""
        if kind == "FANOUT_FAILURE":
            self.metrics["fanout_failures"] += 1
        if kind not in self.metrics["errors_by_kind"]:
            self.metrics["errors_by_kind"][kind] = 0
        self.metrics["errors_by_kind"][kind] += 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        metrics_copy = self.metrics.copy()
        metrics_copy["errors_by_kind"] = dict(self.metrics["errors_by_kind"])
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Archive Sync Metrics ===")
        self.info(f"Catalog Calls: {metrics['catalog_calls']}")
        self.info(f"Downloads Requested: {metrics['downloads_requested']}")
        self.info(
            f"Archives: {metrics['archives_missing']} missing, "
            f"{metrics['archives_pending']} pending"
        )
        self.info(
            f"Persisted: {metrics['records_persisted']} "
            f"({metrics['persist_retries']} retries)"
        )
        self.info(f"Commands Published: {metrics['commands_published']}")

        if metrics["errors_by_kind"]:
            self.info("Error Kinds:")
            for kind, count in metrics["errors_by_kind"].items():
                self.info(f"  {kind}: {count}")
