"""Per-call diagnostics for the IHC transport channel.

Every SOAP call made through the transport is described by a CallRecord and
handed to a DiagnosticSink after the call completes. Sinks observe calls;
they never change a call's outcome.

Invariants:
- Passwords and cookies are redacted unless sensitive logging is enabled
- A failing sink is logged and otherwise ignored
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallRecord:
    """Description of one SOAP call.

    Attributes:
        service: Remote service name, e.g. "ResourceInteractionService"
        action: SOAP action, e.g. "waitForResourceValueChanges"
        url: Request URL
        status: HTTP status, or None if no response was received
        duration: Wall-clock call duration (seconds)
        request_body: Request envelope (redacted unless sensitive logging)
        response_body: Response text, if any
        error: Name and message of the raised error, if the call failed
        had_cookie: Whether a session cookie was attached
    """

    service: str
    action: str
    url: str
    status: int | None
    duration: float
    request_body: str | None = None
    response_body: str | None = None
    error: str | None = None
    had_cookie: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class DiagnosticSink(ABC):
    """Abstract receiver of transport call records."""

    @abstractmethod
    def record(self, call: CallRecord) -> None:
        """Record one completed call. Must not block."""


class NullSink(DiagnosticSink):
    """Sink that discards every record."""

    def record(self, call: CallRecord) -> None:
        """Discard the record."""


class LoggingSink(DiagnosticSink):
    """Sink that writes call records to a logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _LOGGER

    def record(self, call: CallRecord) -> None:
        if call.ok:
            self._logger.debug(
                "%s.%s -> %s in %.3fs",
                call.service,
                call.action,
                call.status,
                call.duration,
            )
        else:
            self._logger.debug(
                "%s.%s failed after %.3fs: %s",
                call.service,
                call.action,
                call.duration,
                call.error,
            )
        if self._logger.isEnabledFor(logging.DEBUG - 5):
            self._logger.log(logging.DEBUG - 5, "Request: %s", call.request_body)
            self._logger.log(logging.DEBUG - 5, "Response: %s", call.response_body)


class MemorySink(DiagnosticSink):
    """Bounded in-memory buffer of call records (FIFO eviction)."""

    def __init__(self, max_size: int = 1000) -> None:
        self._buffer: deque[CallRecord] = deque(maxlen=max_size)

    def record(self, call: CallRecord) -> None:
        self._buffer.append(call)

    @property
    def calls(self) -> list[CallRecord]:
        return list(self._buffer)

    def actions(self) -> list[str]:
        """Action names of buffered calls, oldest first."""
        return [call.action for call in self._buffer]

    def clear(self) -> None:
        self._buffer.clear()


class CallbackSink(DiagnosticSink):
    """Sink that forwards each record to a callback."""

    def __init__(self, callback: Callable[[CallRecord], None]) -> None:
        self._callback = callback

    def record(self, call: CallRecord) -> None:
        self._callback(call)


def safe_record(sink: DiagnosticSink, call: CallRecord) -> None:
    """Hand a record to a sink, logging and dropping any sink failure."""
    try:
        sink.record(call)
    except Exception:
        _LOGGER.exception("Diagnostic sink %r failed", sink)
