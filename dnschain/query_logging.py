"""Resolver handing every answered query to a query log writer in the background."""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import dns.rcode
import dns.rdatatype

from dnschain.base import ChainedResolver, Request, Response, answer_to_string

CLEAN_UP_RUN_PERIOD = 12 * 3600.0
LOG_QUEUE_CAPACITY = 1000

_LOG = logging.getLogger("dnschain.query_logging_resolver")
_STOP = object()


class QueryLogType(Enum):
    """Where query log entries go."""

    CONSOLE = "console"
    NONE = "none"
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    CSV = "csv"
    CSV_CLIENT = "csv-client"

    def __str__(self) -> str:
        return self.value


@dataclass
class QueryLogConfig:
    """Query log type and target, retention, and how writer creation is retried.

    A creation_attempts value of 0 or less retries until a writer is created.
    """

    type: QueryLogType = QueryLogType.CONSOLE
    target: str = ""
    log_retention_days: int = 0
    creation_attempts: int = 3
    creation_cooldown: float = 2.0


@dataclass
class LogEntry:
    """One answered query: request, response, start time and duration."""

    request: Request
    response: Response
    start: float
    duration_ms: int


class QueryLogWriter(ABC):
    """Destination for query log entries."""

    @abstractmethod
    def write(self, entry: LogEntry) -> None:
        """Store one entry."""

    @abstractmethod
    def clean_up(self) -> None:
        """Remove entries older than the retention period."""


class ConsoleWriter(QueryLogWriter):
    """Writes entries to the application log."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("dnschain.queryLog")

    def write(self, entry: LogEntry) -> None:
        request = entry.request
        response = entry.response
        question = request.req.question[0] if request.req.question else None
        message = response.res
        self.logger.info(
            "query resolved: client_ip=%s client_names=%s response_reason=%s response_type=%s "
            "response_code=%s question_name=%s question_type=%s answer=%s duration_ms=%d",
            request.client_ip if request.client_ip is not None else "",
            "; ".join(request.client_names),
            response.reason,
            response.rtype,
            dns.rcode.to_text(message.rcode()) if message is not None else "",
            question.name.to_text() if question is not None else "",
            dns.rdatatype.to_text(question.rdtype) if question is not None else "",
            answer_to_string(message.answer) if message is not None else "",
            entry.duration_ms,
        )

    def clean_up(self) -> None:
        """Nothing is stored; flush the log handlers so written entries reach their target."""
        for handler in self.logger.handlers:
            handler.flush()


class NoneWriter(QueryLogWriter):
    """Discards every entry, keeping only a count of how many were discarded."""

    def __init__(self) -> None:
        self.discarded = 0

    def write(self, entry: LogEntry) -> None:
        self.discarded += 1

    def clean_up(self) -> None:
        """Reset the count of discarded entries."""
        self.discarded = 0


WriterFactory = Callable[[QueryLogConfig], QueryLogWriter]


class QueryLoggingResolver(ChainedResolver):
    """Records question, answer and duration of every successfully resolved query.

    Console and none writers are built in; any other type is created by the
    writer factory. If no writer can be created, the console writer is used.
    """

    def __init__(self, config: QueryLogConfig, writer_factory: Optional[WriterFactory] = None) -> None:
        self.target = config.target
        self.log_retention_days = config.log_retention_days
        self.log_type = config.type
        self.writer = self._create_writer_with_retry(config, writer_factory)
        self.log_queue: queue.Queue = queue.Queue(maxsize=LOG_QUEUE_CAPACITY)
        self._stop = threading.Event()

        self._writer_thread = threading.Thread(target=self._write_log, daemon=True)
        self._writer_thread.start()

        self._cleanup_thread: Optional[threading.Thread] = None
        if self.log_retention_days > 0:
            self._cleanup_thread = threading.Thread(target=self._periodic_clean_up, daemon=True)
            self._cleanup_thread.start()

    def __enter__(self) -> "QueryLoggingResolver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @staticmethod
    def _create_writer(config: QueryLogConfig, writer_factory: Optional[WriterFactory]) -> QueryLogWriter:
        if config.type is QueryLogType.CONSOLE:
            return ConsoleWriter()
        if config.type is QueryLogType.NONE:
            return NoneWriter()
        if writer_factory is None:
            raise ValueError(f"no writer available for query log type {config.type}")
        return writer_factory(config)

    def _create_writer_with_retry(
        self, config: QueryLogConfig, writer_factory: Optional[WriterFactory]
    ) -> QueryLogWriter:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._create_writer(config, writer_factory)
            except Exception as exc:  # noqa: BLE001 - any failure is retried, then falls back
                _LOG.warning(
                    "Error occurred on query writer creation, retry attempt %d/%d: %s",
                    attempt,
                    config.creation_attempts,
                    exc,
                )
                if 0 < config.creation_attempts <= attempt:
                    _LOG.error("can't create query log writer, using console as fallback: %s", exc)
                    self.log_type = QueryLogType.CONSOLE
                    return ConsoleWriter()
                time.sleep(config.creation_cooldown)

    def resolve(self, request: Request) -> Response:
        start = time.time()
        response = self.resolve_next(request)
        duration_ms = int((time.time() - start) * 1000)
        entry = LogEntry(request=request, response=response, start=start, duration_ms=duration_ms)
        try:
            self.log_queue.put_nowait(entry)
        except queue.Full:
            request.log.error("query log writer is too slow, log entry will be dropped")
        return response

    def _write_log(self) -> None:
        while True:
            entry = self.log_queue.get()
            if entry is _STOP:
                break
            started = time.monotonic()
            try:
                self.writer.write(entry)
            except Exception:  # noqa: BLE001 - a failing write must not stop the writer
                _LOG.exception("can't write query log entry")
            pending = self.log_queue.qsize()
            if pending > self.log_queue.maxsize // 2:
                _LOG.warning(
                    "query log writer is too slow, write duration: %d ms (channel_len=%d)",
                    int((time.monotonic() - started) * 1000),
                    pending,
                )

    def _periodic_clean_up(self) -> None:
        while not self._stop.wait(CLEAN_UP_RUN_PERIOD):
            self.clean_up()

    def clean_up(self) -> None:
        """Ask the writer to remove entries older than the retention period."""
        self.writer.clean_up()

    def close(self) -> None:
        """Write the pending entries and stop the background threads."""
        if self._stop.is_set():
            return
        self._stop.set()
        self.log_queue.put(_STOP)
        self._writer_thread.join()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join()
            self._cleanup_thread = None

    def configuration(self) -> list[str]:
        return [
            f'type: "{self.log_type}"',
            f'target: "{self.target}"',
            f"logRetentionDays: {self.log_retention_days}",
        ]