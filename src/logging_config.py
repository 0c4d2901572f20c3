"""
Process logging setup.

Console logging is always installed. When a log shipper is supplied, a
``ShipperLogHandler`` forwards application records to it so they reach the
remote backend. Records produced by the shipper itself, its sink and the AWS
SDK are never forwarded: the shipper's worker thread must not enqueue into
its own queue.
"""
from __future__ import annotations

import logging
from typing import Optional

from src.middleware.request_logging import correlation_id
from src.services.log_shipper import BatchLogShipper, LogEntry

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXCLUDED_LOGGERS = (
    "src.services.log_shipper",
    "src.services.cloudwatch_logs",
    "botocore",
    "boto3",
    "urllib3",
    "s3transfer",
)


class ShipperLogHandler(logging.Handler):
    """Logging handler that enqueues records on a ``BatchLogShipper``."""

    def __init__(self, shipper: BatchLogShipper, level: int = logging.NOTSET):
        super().__init__(level)
        self.shipper = shipper
        self.setFormatter(logging.Formatter("%(message)s"))

    @staticmethod
    def _excluded(name: str) -> bool:
        return any(name == prefix or name.startswith(prefix + ".") for prefix in EXCLUDED_LOGGERS)

    def filter(self, record: logging.LogRecord) -> bool:
        # Runs before handle() takes the handler lock, which a producer
        # blocked on a full queue may be holding
        if self._excluded(record.name):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            metadata = {
                "logger": record.name,
                "module": record.module,
                "line": str(record.lineno),
            }
            request_id = correlation_id.get()
            if request_id:
                metadata["correlation_id"] = request_id
            self.shipper.enqueue(
                LogEntry(message=self.format(record), level=record.levelname, metadata=metadata)
            )
        except Exception:
            self.handleError(record)


def configure_logging(level: str = "INFO", shipper: Optional[BatchLogShipper] = None) -> logging.Logger:
    """Install console logging and, optionally, the remote shipping handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not any(getattr(h, "_grades_console", False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        console._grades_console = True
        root.addHandler(console)

    for handler in [h for h in root.handlers if isinstance(h, ShipperLogHandler)]:
        root.removeHandler(handler)
    if shipper is not None:
        root.addHandler(ShipperLogHandler(shipper))

    return root


def detach_shipper(shipper: BatchLogShipper) -> None:
    """Remove the handlers forwarding to ``shipper`` before it is closed."""
    root = logging.getLogger()
    for handler in [h for h in root.handlers if isinstance(h, ShipperLogHandler)]:
        if handler.shipper is shipper:
            root.removeHandler(handler)
