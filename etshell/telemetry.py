"""Buffered, batched delivery of log records to an optional sender."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Optional

from .terminal_handler import VERSION

APPLICATION = "etshell"
MAX_BUFFER = 16 * 1024
BATCH_SIZE = 1024
FLUSH_INTERVAL = 30.0

Sender = Callable[[str], None]

log = logging.getLogger(__name__)

_LEVELS = {
    logging.CRITICAL: "Fatal",
    logging.ERROR: "Error",
    logging.WARNING: "Warning",
    logging.INFO: "Info",
    logging.DEBUG: "Debug",
}


class _TelemetryLogHandler(logging.Handler):
    def __init__(self, service: "TelemetryService") -> None:
        super().__init__()
        self.service = service

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == "stdout":
            return
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self.service.log(
            {"message": message, "level": _LEVELS.get(record.levelno, "Unknown")}
        )


class TelemetryService:
    """Collects records and, when allowed, sends them in batches."""

    def __init__(
        self,
        allowed: bool,
        environment: str,
        sender: Optional[Sender] = None,
        *,
        flush_interval: float = FLUSH_INTERVAL,
        batch_size: int = BATCH_SIZE,
        max_buffer: int = MAX_BUFFER,
        poll_interval: float = 0.1,
    ) -> None:
        self.allowed = allowed
        self.environment = environment
        self.sender = sender
        self.flush_interval = flush_interval
        self.batch_size = batch_size
        self.max_buffer = max_buffer
        self.poll_interval = poll_interval
        self._lock = threading.RLock()
        self._buffer: list[dict[str, str]] = []
        self._stop = threading.Event()
        self._handler: Optional[_TelemetryLogHandler] = None
        self._thread: Optional[threading.Thread] = None
        if allowed:
            self._handler = _TelemetryLogHandler(self)
            logging.getLogger().addHandler(self._handler)
            self._thread = threading.Thread(
                target=self._run, name="telemetry", daemon=True
            )
            self._thread.start()

    @property
    def shutting_down(self) -> bool:
        return self._stop.is_set()

    def log(self, message: dict[str, str]) -> None:
        """Queue a record; it is dropped when the buffer is full."""
        with self._lock:
            if len(self._buffer) > self.max_buffer:
                return
            record = dict(message)
            record["Environment"] = self.environment
            record["Application"] = APPLICATION
            record["Version"] = VERSION
            self._buffer.append(record)

    def pending(self) -> list[dict[str, str]]:
        """Return a copy of the queued records."""
        with self._lock:
            return [dict(record) for record in self._buffer]

    def flush(self) -> list[dict[str, str]]:
        """Take every queued record, send them if allowed, and return them."""
        with self._lock:
            records, self._buffer = self._buffer, []
        if records and self.allowed and self.sender is not None:
            self.sender(json.dumps(records, indent=4))
        return records

    def _run(self) -> None:
        next_dump = time.monotonic()
        while not self._stop.is_set():
            with self._lock:
                size = len(self._buffer)
            if size and (size >= self.batch_size or next_dump < time.monotonic()):
                next_dump = time.monotonic() + self.flush_interval
                if self._stop.is_set():
                    break
                try:
                    self.flush()
                except Exception as exc:
                    log.debug("Telemetry delivery failed: %s", exc)
            self._stop.wait(self.poll_interval)

    def shutdown(self) -> None:
        """Stop the sending thread and detach from logging; safe to repeat."""
        if self._stop.is_set():
            return
        self._stop.set()
        if self._handler is not None:
            logging.getLogger().removeHandler(self._handler)
            self._handler = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None


_instance: Optional[TelemetryService] = None


def create(allowed: bool, environment: str, sender: Optional[Sender] = None) -> TelemetryService:
    """Create the process-wide service, replacing any earlier one."""
    global _instance
    if _instance is not None:
        _instance.shutdown()
    _instance = TelemetryService(allowed, environment, sender)
    return _instance


def get() -> TelemetryService:
    """Return the process-wide service."""
    if _instance is None:
        raise RuntimeError("Tried to get a singleton before it was created!")
    return _instance


def exists() -> bool:
    return _instance is not None


def destroy() -> None:
    """Shut down and drop the process-wide service."""
    global _instance
    if _instance is not None:
        _instance.shutdown()
    _instance = None