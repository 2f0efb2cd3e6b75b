"""Resolver recording counters and a duration histogram for each request."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import dns.rcode
import dns.rdatatype

from dnschain.base import ChainedResolver, Request, Response

_DURATION_BUCKETS = (5, 10, 20, 30, 50, 75, 100, 200, 500, 1000, 2000)


@dataclass
class MetricsConfig:
    """Whether metrics are recorded and where they are served."""

    enable: bool = False
    path: str = "/metrics"


class _Metric:
    def __init__(self, name: str, help_text: str, labelnames: Sequence[str] = ()) -> None:
        self.name = name
        self.help_text = help_text
        self.labelnames = tuple(labelnames)
        self._lock = threading.Lock()

    def _key(self, labels: dict) -> tuple:
        if set(labels) != set(self.labelnames):
            raise ValueError(
                f"{self.name}: expected labels {sorted(self.labelnames)}, got {sorted(labels)}"
            )
        return tuple(str(labels[name]) for name in self.labelnames)


class Counter(_Metric):
    """A monotonically increasing counter, one value per label combination."""

    def __init__(self, name: str, help_text: str, labelnames: Sequence[str] = ()) -> None:
        super().__init__(name, help_text, labelnames)
        self._values: dict[tuple, float] = {}

    def inc(self, **labels) -> None:
        """Add one to the counter for the labels."""
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + 1.0

    def value(self, **labels) -> float:
        """Current value for the labels."""
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)


class Histogram(_Metric):
    """Counts observations into cumulative buckets, per label combination."""

    def __init__(
        self, name: str, help_text: str, buckets: Sequence[float], labelnames: Sequence[str] = ()
    ) -> None:
        super().__init__(name, help_text, labelnames)
        self.buckets = tuple(sorted(buckets))
        self._counts: dict[tuple, int] = {}
        self._sums: dict[tuple, float] = {}
        self._bucket_counts: dict[tuple, list[int]] = {}

    def observe(self, value: float, **labels) -> None:
        """Record one observation."""
        key = self._key(labels)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            self._sums[key] = self._sums.get(key, 0.0) + value
            counts = self._bucket_counts.setdefault(key, [0] * len(self.buckets))
            for position, bound in enumerate(self.buckets):
                if value <= bound:
                    counts[position] += 1

    def count(self, **labels) -> int:
        """Number of observations for the labels."""
        key = self._key(labels)
        with self._lock:
            return self._counts.get(key, 0)


class MetricsResolver(ChainedResolver):
    """Records query, response, error and duration metrics for each request."""

    def __init__(self, config: MetricsConfig) -> None:
        self.config = config
        self.total_queries = Counter("blocky_query_total", "Number of total queries", ("client", "type"))
        self.total_response = Counter(
            "blocky_response_total",
            "Number of total responses",
            ("reason", "response_code", "response_type"),
        )
        self.total_errors = Counter("blocky_error_total", "Number of total errors")
        self.duration_histogram = Histogram(
            "blocky_request_duration_ms",
            "Request duration distribution",
            _DURATION_BUCKETS,
            ("response_type",),
        )

    def resolve(self, request: Request) -> Response:
        response: Optional[Response] = None
        error: Optional[Exception] = None
        try:
            response = self.resolve_next(request)
        except Exception as exc:  # noqa: BLE001 - recorded, then re-raised
            error = exc

        if self.config.enable:
            self.total_queries.inc(
                client=",".join(request.client_names),
                type=dns.rdatatype.to_text(request.req.question[0].rdtype),
            )
            duration_ms = int((time.time() - request.request_ts) * 1000)
            response_type = str(response.rtype) if response is not None else "err"
            self.duration_histogram.observe(float(duration_ms), response_type=response_type)
            if error is not None:
                self.total_errors.inc()
            else:
                self.total_response.inc(
                    reason=response.reason,
                    response_code=dns.rcode.to_text(response.res.rcode()),
                    response_type=str(response.rtype),
                )

        if error is not None:
            raise error
        return response

    def configuration(self) -> list[str]:
        return [
            "metrics:",
            f"  Enable = {'true' if self.config.enable else 'false'}",
            f"  Path   = {self.config.path}",
        ]