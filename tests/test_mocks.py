import dns.exception
import dns.message
import dns.query
import dns.rcode
import dns.rrset
import pytest

from dnschain.mocks import MockUDPUpstreamServer
from dnschain.upstream import NetProtocol


def _ask(upstream, name, rdtype):
    query = dns.message.make_query(name, rdtype)
    return query, dns.query.udp(query, upstream.host, port=upstream.port, timeout=2)


def test_start_returns_local_udp_upstream():
    with MockUDPUpstreamServer() as server:
        upstream = server.start()
    assert upstream.net is NetProtocol.TCP_UDP
    assert upstream.host == "127.0.0.1"
    assert 0 < upstream.port <= 65535


def test_answer_rr_is_served_and_counted():
    server = MockUDPUpstreamServer().with_answer_rr("25.178.168.192.in-addr.arpa. 600 IN PTR host1")
    with server:
        upstream = server.start()
        query, resp = _ask(upstream, "25.178.168.192.in-addr.arpa.", "PTR")
        assert server.call_count == 1
    assert resp.id == query.id
    assert resp.question == query.question
    assert resp.answer[0].ttl == 600
    assert [rdata.target.to_text() for rdata in resp.answer[0]] == ["host1."]


def test_multiple_answers_keep_their_order():
    server = MockUDPUpstreamServer().with_answer_rr(
        "25.178.168.192.in-addr.arpa. 600 IN PTR myhost1",
        "25.178.168.192.in-addr.arpa. 600 IN PTR myhost2",
    )
    with server:
        _, resp = _ask(server.start(), "25.178.168.192.in-addr.arpa.", "PTR")
    assert [rdata.target.to_text() for rrset in resp.answer for rdata in rrset] == ["myhost1.", "myhost2."]


def test_relative_names_become_absolute():
    with MockUDPUpstreamServer().with_answer_rr("example.com 123 IN A 123.124.122.122") as server:
        _, resp = _ask(server.start(), "example.com.", "A")
    assert resp.answer[0].name.to_text() == "example.com."
    assert resp.answer[0][0].address == "123.124.122.122"


def test_answer_error_sets_rcode():
    with MockUDPUpstreamServer().with_answer_error(dns.rcode.NXDOMAIN) as server:
        query, resp = _ask(server.start(), "example.com.", "A")
    assert resp.rcode() == dns.rcode.NXDOMAIN
    assert resp.answer == []
    assert resp.question == query.question


def test_answer_msg_is_served_for_every_request():
    answer = dns.message.Message()
    answer.answer.append(dns.rrset.from_text("example.com.", 250, "IN", "A", "192.192.192.192"))
    with MockUDPUpstreamServer().with_answer_msg(answer) as server:
        upstream = server.start()
        _, first = _ask(upstream, "example.com.", "A")
        _, second = _ask(upstream, "example.com.", "A")
        assert server.call_count == 2
    assert first.answer == second.answer == answer.answer


def test_answer_fn_sees_the_request():
    seen = []

    def answer(request):
        seen.append(request.question[0].name.to_text())
        return dns.message.Message()

    with MockUDPUpstreamServer().with_answer_fn(answer) as server:
        query, resp = _ask(server.start(), "other.box.", "A")
        assert server.call_count == 1
    assert seen == ["other.box."]
    assert resp.id == query.id
    assert resp.question == query.question
    assert resp.answer == []
    assert resp.rcode() == dns.rcode.NOERROR


def test_none_answer_sends_garbage():
    with MockUDPUpstreamServer().with_answer_fn(lambda request: None) as server:
        upstream = server.start()
        with pytest.raises(dns.exception.DNSException):
            _ask(upstream, "example.com.", "A")
        assert server.call_count == 1


def test_invalid_record_is_rejected():
    with pytest.raises(ValueError):
        MockUDPUpstreamServer().with_answer_rr("example.com")
    with pytest.raises(ValueError):
        MockUDPUpstreamServer().with_answer_rr("example.com 123 IN A not-an-address")


def test_closed_server_stops_answering():
    server = MockUDPUpstreamServer().with_answer_rr("example.com 123 IN A 123.124.122.122")
    upstream = server.start()
    server.close()
    query = dns.message.make_query("example.com.", "A")
    with pytest.raises((dns.exception.Timeout, ConnectionRefusedError)):
        dns.query.udp(query, upstream.host, port=upstream.port, timeout=0.2)
    assert server.call_count == 0