import ipaddress

import dns.message
import dns.rdatatype
import pytest

from dnschain.base import (
    ChainedResolver,
    RequestProtocol,
    Resolver,
    Response,
    ResponseType,
    answer_to_string,
    chain,
    create_answer_from_question,
    default_name,
    extract_domain,
    new_request,
    new_request_with_client,
    new_request_with_client_id,
    resolver_name,
)


class FirstResolver(ChainedResolver):
    def resolve(self, request):
        return self.resolve_next(request)

    def configuration(self):
        return ["first"]


class LastResolver(Resolver):
    def resolve(self, request):
        return Response(res=dns.message.Message(), reason="last")

    def configuration(self):
        return ["last"]


class CustomNamed(LastResolver):
    def name(self):
        return "Special w/ Other"


def test_chain_is_iterable_via_next():
    first = FirstResolver()
    last = LastResolver()
    head = chain(first, last)
    assert head is first
    assert first.next_resolver is last


def test_chain_resolves_through_next():
    head = chain(FirstResolver(), LastResolver())
    resp = head.resolve(new_request("example.com.", "A"))
    assert resp.reason == "last"
    assert resp.rtype == ResponseType.RESOLVED


def test_chain_requires_resolvers():
    with pytest.raises(ValueError):
        chain()


def test_resolve_next_without_next_raises():
    with pytest.raises(RuntimeError):
        FirstResolver().resolve(new_request("example.com.", "A"))


def test_name_returns_type_name():
    assert resolver_name(FirstResolver()) == "FirstResolver"
    assert default_name(LastResolver()) == "LastResolver"


def test_name_uses_custom_name():
    assert resolver_name(CustomNamed()) == "Special w/ Other"


def test_new_request_question():
    req = new_request("Example.COM.", dns.rdatatype.AAAA)
    question = req.req.question[0]
    assert question.rdtype == dns.rdatatype.AAAA
    assert extract_domain(question) == "example.com"
    assert req.protocol == RequestProtocol.UDP


def test_new_request_with_client():
    req = new_request_with_client("example.com.", "A", "1.2.3.4", "a", "b")
    assert req.client_ip == ipaddress.ip_address("1.2.3.4")
    assert req.client_names == ["a", "b"]


def test_new_request_with_empty_ip():
    req = new_request_with_client("example.com.", "A", "")
    assert req.client_ip is None
    assert req.client_names == []


def test_new_request_with_client_id():
    req = new_request_with_client_id("example.com.", "A", "1.2.3.4", "client123")
    assert req.request_client_id == "client123"


def test_create_answer_and_string():
    question = new_request("example.com.", "A").req.question[0]
    rrset = create_answer_from_question(question, ipaddress.ip_address("1.2.3.4"), 300)
    assert rrset.ttl == 300
    assert answer_to_string([rrset]) == "A (1.2.3.4)"


def test_create_answer_rejects_other_types():
    question = new_request("example.com.", "TXT").req.question[0]
    with pytest.raises(ValueError):
        create_answer_from_question(question, ipaddress.ip_address("1.2.3.4"), 300)