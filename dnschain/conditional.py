"""Resolver sending questions for configured domains to dedicated upstreams."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import dns.name
import dns.rrset

from dnschain.base import (
    ChainedResolver,
    Request,
    Resolver,
    Response,
    ResponseType,
    answer_to_string,
    extract_domain,
    fqdn,
    resolver_name,
)
from dnschain.parallel_best import DEFAULT_GROUP, ParallelBestResolver

_DEFAULT_TIMEOUT = 2.0


@dataclass
class ConditionalUpstreamConfig:
    """Domain to upstream list mapping; '.' applies to single-label names."""

    mapping: dict = field(default_factory=dict)


def _renamed_question(question: dns.rrset.RRset, name: str) -> dns.rrset.RRset:
    return dns.rrset.RRset(dns.name.from_text(name), question.rdclass, question.rdtype)


class ConditionalUpstreamResolver(ChainedResolver):
    """Delegates a question to the upstreams configured for its domain or a parent domain."""

    def __init__(
        self,
        config: ConditionalUpstreamConfig,
        timeout: float = _DEFAULT_TIMEOUT,
        verify: bool = True,
    ) -> None:
        self.mapping: dict[str, Resolver] = {}
        for domain, upstreams in config.mapping.items():
            resolver = ParallelBestResolver({DEFAULT_GROUP: list(upstreams)}, timeout, verify=verify)
            self.mapping[domain.lower()] = resolver

    def configuration(self) -> list[str]:
        if not self.mapping:
            return ["deactivated"]
        return [f'{key} = "{value}"' for key, value in self.mapping.items()]

    def _process_request(self, request: Request) -> Optional[Response]:
        domain_from_question = extract_domain(request.req.question[0])
        if "." in domain_from_question:
            domain = domain_from_question
            while domain:
                resolver = self.mapping.get(domain)
                if resolver is not None:
                    return self._internal_resolve(resolver, domain_from_question, domain, request)
                _, dot, rest = domain.partition(".")
                if not dot:
                    break
                domain = rest
        else:
            resolver = self.mapping.get(".")
            if resolver is not None:
                return self._internal_resolve(resolver, domain_from_question, domain_from_question, request)
        return None

    def _internal_resolve(self, resolver: Resolver, full_domain: str, domain: str, request: Request) -> Response:
        question_name = fqdn(full_domain)
        request.req.question[0] = _renamed_question(request.req.question[0], question_name)
        response = resolver.resolve(request)
        response.reason = "CONDITIONAL"
        response.rtype = ResponseType.CONDITIONAL
        if response.res is not None and response.res.question:
            response.res.question[0] = _renamed_question(response.res.question[0], question_name)
        request.log.debug(
            "received response from conditional upstream: answer=%s domain=%s upstream=%s",
            answer_to_string(response.res.answer) if response.res is not None else "",
            domain,
            resolver,
        )
        return response

    def resolve(self, request: Request) -> Response:
        if self.mapping:
            response = self._process_request(request)
            if response is not None:
                return response
        request.log.debug("go to next resolver: %s", resolver_name(self.next_resolver))
        return self.resolve_next(request)