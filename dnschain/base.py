"""Core types shared by every resolver in a chain."""

from __future__ import annotations

import ipaddress
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Union

import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_DEFAULT_LOGGER = logging.getLogger("dnschain")


class ResponseType(Enum):
    """Origin of a response."""

    RESOLVED = "RESOLVED"
    CACHED = "CACHED"
    BLOCKED = "BLOCKED"
    CONDITIONAL = "CONDITIONAL"
    CUSTOMDNS = "CUSTOMDNS"
    HOSTSFILE = "HOSTSFILE"
    NOTFQDN = "NOTFQDN"
    SPECIAL = "SPECIAL"
    FILTERED = "FILTERED"

    def __str__(self) -> str:
        return self.value


class RequestProtocol(Enum):
    """Transport the request arrived on."""

    TCP = "TCP"
    UDP = "UDP"

    def __str__(self) -> str:
        return self.value


@dataclass
class Request:
    """A DNS request travelling through the resolver chain."""

    req: dns.message.Message
    client_ip: Optional[IPAddress] = None
    client_names: list[str] = field(default_factory=list)
    request_client_id: str = ""
    log: Union[logging.Logger, logging.LoggerAdapter] = _DEFAULT_LOGGER
    request_ts: float = field(default_factory=time.time)
    protocol: RequestProtocol = RequestProtocol.UDP


@dataclass
class Response:
    """The result of resolving a request."""

    res: Optional[dns.message.Message] = None
    rtype: ResponseType = ResponseType.RESOLVED
    reason: str = ""


class Resolver(ABC):
    """A component that resolves DNS requests."""

    @abstractmethod
    def resolve(self, request: Request) -> Response:
        """Resolve the request, raising on failure."""

    @abstractmethod
    def configuration(self) -> list[str]:
        """Describe the current configuration as printable lines."""


class ChainedResolver(Resolver):
    """A resolver that may hand the request on to the next resolver."""

    next_resolver: Optional[Resolver] = None

    def resolve_next(self, request: Request) -> Response:
        """Pass the request to the next resolver in the chain."""
        if self.next_resolver is None:
            raise RuntimeError(f"{default_name(self)} has no next resolver")
        return self.next_resolver.resolve(request)


def chain(*resolvers: Resolver) -> Resolver:
    """Link the resolvers in order and return the first one."""
    if not resolvers:
        raise ValueError("at least one resolver is required")
    for current, following in zip(resolvers, resolvers[1:]):
        if isinstance(current, ChainedResolver):
            current.next_resolver = following
    return resolvers[0]


def default_name(resolver: object) -> str:
    """Short name of a resolver derived from its type."""
    return type(resolver).__name__


def resolver_name(resolver: object) -> str:
    """User-friendly name of a resolver; uses its own name() if it has one."""
    custom = getattr(resolver, "name", None)
    if callable(custom):
        return custom()
    return default_name(resolver)


def _to_rdtype(qtype: Union[int, str]) -> dns.rdatatype.RdataType:
    if isinstance(qtype, str):
        return dns.rdatatype.from_text(qtype)
    return dns.rdatatype.RdataType.make(qtype)


def parse_ip(text: Union[str, IPAddress, None]) -> Optional[IPAddress]:
    """Parse an IP address, returning None when it is not valid."""
    if text is None:
        return None
    if isinstance(text, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return text
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError:
        return None


def normalize_ip(ip: IPAddress) -> IPAddress:
    """Unwrap IPv4-mapped IPv6 addresses into plain IPv4."""
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def new_message_with_question(question: str, qtype: Union[int, str]) -> dns.message.Message:
    """Build a query message holding a single question."""
    return dns.message.make_query(question, _to_rdtype(qtype))


def new_request(question: str, qtype: Union[int, str], logger=None) -> Request:
    """Create a UDP request for the question."""
    return Request(
        req=new_message_with_question(question, qtype),
        log=logger if logger is not None else _DEFAULT_LOGGER,
        protocol=RequestProtocol.UDP,
    )


def new_request_with_client(question: str, qtype: Union[int, str], ip: str, *client_names: str) -> Request:
    """Create a request carrying a client address and client names."""
    return Request(
        req=new_message_with_question(question, qtype),
        client_ip=parse_ip(ip),
        client_names=list(client_names),
        protocol=RequestProtocol.UDP,
    )


def new_request_with_client_id(question: str, qtype: Union[int, str], ip: str, request_client_id: str) -> Request:
    """Create a request carrying a client address and a client id."""
    return Request(
        req=new_message_with_question(question, qtype),
        client_ip=parse_ip(ip),
        request_client_id=request_client_id,
        protocol=RequestProtocol.UDP,
    )


def extract_domain(question: dns.rrset.RRset) -> str:
    """Lower-case domain of a question without the trailing dot."""
    return question.name.to_text(omit_final_dot=True).lower()


def fqdn(name: str) -> str:
    """Return the name with a trailing dot."""
    return name if name.endswith(".") else name + "."


def create_answer_from_question(question: dns.rrset.RRset, ip: IPAddress, ttl: int) -> dns.rrset.RRset:
    """Build an A or AAAA record answering the question with the address."""
    rdtype = question.rdtype
    if rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
        raise ValueError(f"unsupported query type {dns.rdatatype.to_text(rdtype)}")
    return dns.rrset.from_text(question.name, ttl, dns.rdataclass.IN, rdtype, str(normalize_ip(ip)))


def create_ptr_answer(question: dns.rrset.RRset, target: str, ttl: int) -> dns.rrset.RRset:
    """Build a PTR record answering the question."""
    return dns.rrset.from_text(question.name, ttl, dns.rdataclass.IN, dns.rdatatype.PTR, fqdn(target))


def answer_to_string(answer: Sequence[dns.rrset.RRset]) -> str:
    """Render answer records as 'TYPE (data)' joined by commas."""
    return ", ".join(
        f"{dns.rdatatype.to_text(rrset.rdtype)} ({rdata.to_text()})" for rrset in answer for rdata in rrset
    )