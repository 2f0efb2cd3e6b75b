"""Resolver answering from a configured domain to address mapping."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Optional

import dns.message
import dns.rdatatype
import dns.reversename

from dnschain.base import (
    ChainedResolver,
    IPAddress,
    Request,
    Response,
    ResponseType,
    answer_to_string,
    create_answer_from_question,
    create_ptr_answer,
    extract_domain,
    normalize_ip,
    parse_ip,
    resolver_name,
)


@dataclass
class CustomDNSConfig:
    """Domain to addresses mapping, answer TTL in seconds and filtering of unmapped types."""

    mapping: dict = field(default_factory=dict)
    custom_ttl: float = 3600.0
    filter_unmapped_types: bool = True


def is_supported_type(ip: IPAddress, qtype: int) -> bool:
    """True if the address can answer a query of that type."""
    ip = normalize_ip(ip)
    if isinstance(ip, ipaddress.IPv4Address):
        return qtype == dns.rdatatype.A
    return qtype == dns.rdatatype.AAAA


def _parse_all(ips) -> list[IPAddress]:
    parsed = []
    for raw in ips:
        ip = parse_ip(raw)
        if ip is None:
            raise ValueError(f"invalid IP address: {raw!r}")
        parsed.append(ip)
    return parsed


class CustomDNSResolver(ChainedResolver):
    """Answers A, AAAA and PTR queries from the configured mapping."""

    def __init__(self, config: CustomDNSConfig) -> None:
        self.mapping: dict[str, list[IPAddress]] = {}
        self.reverse_addresses: dict[str, list[str]] = {}
        for url, raw_ips in config.mapping.items():
            ips = _parse_all(raw_ips)
            self.mapping[url.lower()] = ips
            for ip in ips:
                reverse = dns.reversename.from_address(str(normalize_ip(ip))).to_text()
                self.reverse_addresses.setdefault(reverse, []).append(url)
        self.ttl = int(config.custom_ttl)
        self.filter_unmapped_types = config.filter_unmapped_types

    def configuration(self) -> list[str]:
        if not self.mapping:
            return ["deactivated"]
        return [f'{key} = "[{" ".join(str(ip) for ip in ips)}]"' for key, ips in self.mapping.items()]

    def _handle_reverse_dns(self, request: Request) -> Optional[Response]:
        question = request.req.question[0]
        if question.rdtype != dns.rdatatype.PTR:
            return None
        urls = self.reverse_addresses.get(question.name.to_text())
        if urls is None:
            return None
        response = dns.message.make_response(request.req)
        response.answer.extend(create_ptr_answer(question, url, self.ttl) for url in urls)
        return Response(res=response, rtype=ResponseType.CUSTOMDNS, reason="CUSTOM DNS")

    def _process_request(self, request: Request) -> Optional[Response]:
        response = dns.message.make_response(request.req)
        question = request.req.question[0]
        domain = extract_domain(question)

        while domain:
            ips = self.mapping.get(domain)
            if ips is not None:
                response.answer.extend(
                    create_answer_from_question(question, ip, self.ttl)
                    for ip in ips
                    if is_supported_type(ip, question.rdtype)
                )
                if response.answer:
                    request.log.debug(
                        "returning custom dns entry: domain=%s answer=%s",
                        domain,
                        answer_to_string(response.answer),
                    )
                    return Response(res=response, rtype=ResponseType.CUSTOMDNS, reason="CUSTOM DNS")
                if not self.filter_unmapped_types:
                    return None
                return Response(res=response, rtype=ResponseType.CUSTOMDNS, reason="CUSTOM DNS")
            _, dot, rest = domain.partition(".")
            if not dot:
                break
            domain = rest
        return None

    def resolve(self, request: Request) -> Response:
        reverse = self._handle_reverse_dns(request)
        if reverse is not None:
            return reverse
        if self.mapping:
            response = self._process_request(request)
            if response is not None:
                return response
        request.log.debug("go to next resolver: %s", resolver_name(self.next_resolver))
        return self.resolve_next(request)