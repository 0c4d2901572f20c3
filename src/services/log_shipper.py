"""
Batched remote log shipper.

Producers hand log entries to a bounded queue; a single background thread
owns the buffer and decides when to flush it to the sink: when the buffer
reaches ``batch_size`` entries, when ``flush_interval`` elapses, or when the
shipper is closed. Delivery is best effort and at most once per entry.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_FLUSH_INTERVAL = 5.0

_CLOSE = object()


@dataclass(frozen=True)
class LogEntry:
    message: str
    level: str = "INFO"
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze a private copy so later changes by the producer are not seen
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))


class LogSink(Protocol):
    """Remote backend accepting one entry at a time.

    ``send`` returns on success and raises on a terminal failure. Any retry
    policy (token refresh and the like) belongs to the sink.
    """

    def send(self, entry: LogEntry) -> None:
        ...


@dataclass(frozen=True)
class ShipperStats:
    enqueued: int = 0
    delivered: int = 0
    failed: int = 0
    flushes: int = 0


class BatchLogShipper:
    """Accumulates log entries and sends them to a sink in batches."""

    def __init__(
        self,
        sink: LogSink,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        if flush_interval <= 0:
            raise ValueError(f"flush_interval must be positive, got {flush_interval}")

        self._sink = sink
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=batch_size * 2)
        self._stats_lock = threading.Lock()
        self._enqueued = 0
        self._delivered = 0
        self._failed = 0
        self._flushes = 0
        self._closed = False
        self._close_lock = threading.Lock()

        self._worker = threading.Thread(
            target=self._process, name="log-shipper", daemon=True
        )
        self._worker.start()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def flush_interval(self) -> float:
        return self._flush_interval

    @property
    def stats(self) -> ShipperStats:
        with self._stats_lock:
            return ShipperStats(
                enqueued=self._enqueued,
                delivered=self._delivered,
                failed=self._failed,
                flushes=self._flushes,
            )

    def enqueue(self, entry: LogEntry) -> None:
        """Hand an entry to the worker; blocks while the queue is full.

        Must not be called after ``close()``.
        """
        self._queue.put(entry)
        with self._stats_lock:
            self._enqueued += 1

    def log(self, message: str, level: str = "INFO", metadata: Optional[Mapping[str, str]] = None) -> None:
        self.enqueue(LogEntry(message=message, level=level, metadata=metadata or {}))

    def close(self, timeout: Optional[float] = None) -> None:
        """Flush everything enqueued so far and stop the worker."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        # Queued behind every earlier entry, so those are consumed first
        try:
            self._queue.put(_CLOSE, timeout=timeout)
        except queue.Full:
            with self._close_lock:
                self._closed = False
            logger.warning(f"Log shipper queue still full after {timeout}s; close abandoned")
            return
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning(f"Log shipper did not stop within {timeout}s")

    def _process(self) -> None:
        buffer: List[LogEntry] = []
        deadline = time.monotonic() + self._flush_interval

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                if buffer:
                    self._flush(buffer)
                    buffer = []
                deadline = time.monotonic() + self._flush_interval
                continue

            try:
                item = self._queue.get(timeout=remaining)
            except queue.Empty:
                continue

            if item is _CLOSE:
                if buffer:
                    self._flush(buffer)
                return

            buffer.append(item)
            if len(buffer) >= self._batch_size:
                self._flush(buffer)
                buffer = []
                deadline = time.monotonic() + self._flush_interval

    def _flush(self, entries: List[LogEntry]) -> None:
        delivered = 0
        for entry in entries:
            try:
                self._sink.send(entry)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Failed to send log entry to remote sink: {type(e).__name__}: {e}",
                    exc_info=True,
                )
        with self._stats_lock:
            self._flushes += 1
            self._delivered += delivered
            self._failed += len(entries) - delivered
        logger.debug(f"Flushed {delivered}/{len(entries)} log entries")
