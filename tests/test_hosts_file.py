import dns.message
import dns.rcode
import dns.rdatatype
import pytest

from dnschain.base import Resolver, Response, ResponseType, new_request
from dnschain.hosts_file import HostsFileConfig, HostsFileResolver

TTL = 42

HOSTS_LINES = [
    "# Random comment",
    "127.0.0.1               localhost",
    "127.0.1.1               localhost2  localhost2.local.lan",
    "::1                     localhost",
    "# Two empty lines to follow",
    "",
    "",
    "faaf:faaf:faaf:faaf::1  ipv6host    ipv6host.local.lan",
    "192.168.2.1             ipv4host    ipv4host.local.lan",
    "10.0.0.1                router0 router1 router2",
    "10.0.0.2                router3     # Another comment",
    "10.0.0.3                            # Invalid entry",
    "300.300.300.300         invalid4    # Invalid IPv4",
    "abcd:efgh:ijkl::1       invalid6    # Invalud IPv6",
]

IPV6_REVERSE = "1.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.f.a.a.f.f.a.a.f.f.a.a.f.f.a.a.f.ip6.arpa."


class NextMock(Resolver):
    def __init__(self):
        self.calls = []

    def resolve(self, request):
        self.calls.append(request)
        return Response(res=dns.message.make_response(request.req))

    def configuration(self):
        return []


def records(answer):
    return [(rr.name.to_text(), rr.rdtype, rr.ttl, rd.to_text()) for rr in answer for rd in rr]


@pytest.fixture
def hosts_path(tmp_path):
    path = tmp_path / "hosts.txt"
    path.write_text("\n".join(HOSTS_LINES))
    return path


def make(config):
    resolver = HostsFileResolver(config)
    nxt = NextMock()
    resolver.next_resolver = nxt
    return resolver, nxt


@pytest.fixture
def sut(hosts_path):
    resolver, nxt = make(
        HostsFileConfig(filepath=str(hosts_path), hosts_ttl=TTL, refresh_period=1800, filter_loopback=True)
    )
    yield resolver, nxt
    resolver.close()


def test_missing_file_disables_resolver(tmp_path):
    resolver, nxt = make(HostsFileConfig(filepath=str(tmp_path / "missing" / "file"), hosts_ttl=TTL))
    assert resolver.filepath == ""
    assert resolver.hosts == []
    resolver.resolve(new_request("example.com.", "A"))
    assert len(nxt.calls) == 1
    resolver.close()


def test_unset_file_parses_nothing_and_delegates():
    resolver, nxt = make(HostsFileConfig())
    assert resolver.parse_hosts_file() is None
    assert resolver.hosts == []
    resolver.resolve(new_request("example.com.", "A"))
    assert len(nxt.calls) == 1
    resolver.close()


def test_parses_hosts(sut):
    resolver, _ = sut
    assert len(resolver.hosts) == 4
    assert [h.hostname for h in resolver.hosts] == ["ipv6host", "ipv4host", "router0", "router3"]
    assert resolver.hosts[2].aliases == ["router1", "router2"]


def test_loopback_kept_when_not_filtered(hosts_path):
    resolver, _ = make(HostsFileConfig(filepath=str(hosts_path), refresh_period=0))
    assert len(resolver.hosts) == 7
    resolver.close()


def test_ipv4_query(sut):
    resolver, nxt = sut
    resp = resolver.resolve(new_request("ipv4host.", "A"))
    assert resp.res.rcode() == dns.rcode.NOERROR
    assert resp.rtype == ResponseType.HOSTSFILE
    assert records(resp.res.answer) == [("ipv4host.", dns.rdatatype.A, TTL, "192.168.2.1")]
    assert nxt.calls == []


def test_ipv4_alias_query(sut):
    resolver, _ = sut
    resp = resolver.resolve(new_request("router2.", "A"))
    assert resp.rtype == ResponseType.HOSTSFILE
    assert records(resp.res.answer) == [("router2.", dns.rdatatype.A, TTL, "10.0.0.1")]


@pytest.mark.parametrize("qtype", ["A", "AAAA"])
def test_unknown_name_returns_empty_from_next(sut, qtype):
    resolver, nxt = sut
    resp = resolver.resolve(new_request("does.not.exist.", qtype))
    assert resp.res.rcode() == dns.rcode.NOERROR
    assert resp.res.answer == []
    assert len(nxt.calls) == 1


def test_ipv6_query(sut):
    resolver, _ = sut
    resp = resolver.resolve(new_request("ipv6host.", "AAAA"))
    assert resp.rtype == ResponseType.HOSTSFILE
    assert records(resp.res.answer) == [("ipv6host.", dns.rdatatype.AAAA, TTL, "faaf:faaf:faaf:faaf::1")]


def test_reverse_ipv4_single_name(sut):
    resolver, _ = sut
    resp = resolver.resolve(new_request("2.0.0.10.in-addr.arpa.", "PTR"))
    assert resp.rtype == ResponseType.HOSTSFILE
    assert records(resp.res.answer) == [("2.0.0.10.in-addr.arpa.", dns.rdatatype.PTR, TTL, "router3.")]


def test_reverse_ipv4_with_aliases(sut):
    resolver, _ = sut
    resp = resolver.resolve(new_request("1.0.0.10.in-addr.arpa.", "PTR"))
    assert resp.res.rcode() == dns.rcode.NOERROR
    assert records(resp.res.answer) == [
        ("1.0.0.10.in-addr.arpa.", dns.rdatatype.PTR, TTL, "router0."),
        ("1.0.0.10.in-addr.arpa.", dns.rdatatype.PTR, TTL, "router1."),
        ("1.0.0.10.in-addr.arpa.", dns.rdatatype.PTR, TTL, "router2."),
    ]


def test_reverse_ipv6(sut):
    resolver, _ = sut
    resp = resolver.resolve(new_request(IPV6_REVERSE, "PTR"))
    assert resp.rtype == ResponseType.HOSTSFILE
    assert records(resp.res.answer) == [
        (IPV6_REVERSE, dns.rdatatype.PTR, TTL, "ipv6host."),
        (IPV6_REVERSE, dns.rdatatype.PTR, TTL, "ipv6host.local.lan."),
    ]


def test_configuration_enabled(sut, hosts_path):
    resolver, _ = sut
    assert resolver.configuration() == [
        f"hosts file path: {hosts_path}",
        f"hosts TTL: {TTL}",
        "hosts refresh period: 30m0s",
        "filter loopback addresses: true",
    ]


def test_configuration_disabled():
    resolver = HostsFileResolver(HostsFileConfig())
    assert resolver.configuration() == ["deactivated"]
    resolver.close()


def test_delegates_unknown_domain(sut):
    resolver, nxt = sut
    resolver.resolve(new_request("example.com.", "A"))
    assert len(nxt.calls) == 1