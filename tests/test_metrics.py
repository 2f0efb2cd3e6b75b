import dns.message
import dns.rcode
import pytest

from dnschain.base import Resolver, Response, new_request_with_client
from dnschain.metrics import Counter, Histogram, MetricsConfig, MetricsResolver


class NextMock(Resolver):
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def resolve(self, request):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return Response(res=dns.message.make_response(request.req))

    def configuration(self):
        return []


def build(enable=True, error=None):
    sut = MetricsResolver(MetricsConfig(enable=enable))
    nxt = NextMock(error)
    sut.next_resolver = nxt
    return sut, nxt


def test_records_request_metrics():
    sut, nxt = build()
    resp = sut.resolve(new_request_with_client("example.com.", "A", "", "client"))
    assert resp.res.rcode() == dns.rcode.NOERROR
    assert sut.total_queries.value(client="client", type="A") == 1.0
    assert sut.total_response.value(reason="", response_code="NOERROR", response_type="RESOLVED") == 1.0
    assert sut.duration_histogram.count(response_type="RESOLVED") == 1
    assert sut.total_errors.value() == 0.0
    assert nxt.calls == 1


def test_records_error():
    sut, _ = build(error=RuntimeError("error"))
    with pytest.raises(RuntimeError, match="error"):
        sut.resolve(new_request_with_client("example.com.", "A", "", "client"))
    assert sut.total_errors.value() == 1.0
    assert sut.duration_histogram.count(response_type="err") == 1
    assert sut.total_queries.value(client="client", type="A") == 1.0


def test_disabled_records_nothing():
    sut, nxt = build(enable=False)
    sut.resolve(new_request_with_client("example.com.", "A", "", "client"))
    assert nxt.calls == 1
    assert sut.total_queries.value(client="client", type="A") == 0.0


def test_configuration():
    sut, _ = build()
    config = sut.configuration()
    assert len(config) > 1
    assert config == ["metrics:", "  Enable = true", "  Path   = /metrics"]


def test_counter_rejects_wrong_labels():
    counter = Counter("c", "help", ("a",))
    with pytest.raises(ValueError):
        counter.inc(b="x")


def test_counter_counts_per_label():
    counter = Counter("c", "help", ("a",))
    counter.inc(a="x")
    counter.inc(a="x")
    counter.inc(a="y")
    assert counter.value(a="x") == 2.0
    assert counter.value(a="y") == 1.0


def test_histogram_counts_observations():
    histogram = Histogram("h", "help", (5, 10), ("kind",))
    histogram.observe(3, kind="a")
    histogram.observe(30, kind="a")
    assert histogram.count(kind="a") == 2
    assert histogram.count(kind="b") == 0