"""Resolver that rewrites domain suffixes before an inner resolver sees them."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Optional

import dns.message
import dns.name
import dns.rrset

from dnschain.base import ChainedResolver, Request, Response, default_name, fqdn, resolver_name
from dnschain.noop import NO_RESPONSE, NoOpResolver


@dataclass
class RewriteConfig:
    """Suffix rewrites and whether to fall back to the normal chain on an empty answer."""

    rewrite: dict = field(default_factory=dict)
    fallback_upstream: bool = False


def _renamed(rrset: dns.rrset.RRset, name: dns.name.Name) -> dns.rrset.RRset:
    renamed = dns.rrset.RRset(name, rrset.rdclass, rrset.rdtype, rrset.covers)
    for rdata in rrset:
        renamed.add(rdata, rrset.ttl)
    return renamed


class RewriterResolver(ChainedResolver):
    """Branches the chain: the inner resolver sees rewritten names, then the normal chain continues."""

    def __init__(self, config: RewriteConfig, inner: ChainedResolver) -> None:
        self.rewrite = {key.lower(): value.lower() for key, value in config.rewrite.items()}
        self.inner = inner
        self.fallback_upstream = config.fallback_upstream
        inner.next_resolver = NoOpResolver()

    def name(self) -> str:
        return f"{resolver_name(self.inner)} w/ {default_name(self)}"

    def configuration(self) -> list[str]:
        lines = ["rewrite:"]
        lines.extend(f'  {key} = "{value}"' for key, value in self.rewrite.items())
        lines.extend(self.inner.configuration())
        return lines

    def _rewrite_domain(self, domain: str) -> tuple[str, str]:
        for key, value in self.rewrite.items():
            suffix = "." + key
            if domain.endswith(suffix):
                return domain[: -len(suffix)] + "." + value, key
        return domain, ""

    def _rewrite_request(
        self, request: Request, message: dns.message.Message
    ) -> tuple[Optional[dns.message.Message], list[dns.name.Name]]:
        rewritten: Optional[dns.message.Message] = None
        original_names = [question.name for question in message.question]
        for index, question in enumerate(message.question):
            domain = question.name.to_text(omit_final_dot=True).lower()
            new_domain, key = self._rewrite_domain(domain)
            if new_domain != domain:
                if rewritten is None:
                    rewritten = copy.deepcopy(message)
                rewritten.question[index] = _renamed(question, dns.name.from_text(fqdn(new_domain)))
                request.log.debug(
                    "rewriting %r to %r (rewrite %s:%s)", domain, new_domain, key, self.rewrite[key]
                )
        return rewritten, original_names

    def resolve(self, request: Request) -> Response:
        original = request.req
        rewritten, original_names = self._rewrite_request(request, original)
        if rewritten is not None:
            request.req = rewritten

        request.log.debug("go to inner resolver: %s", resolver_name(self.inner))
        response: Optional[Response] = None
        error: Optional[Exception] = None
        try:
            response = self.inner.resolve(request)
        except Exception as exc:  # noqa: BLE001 - decided below whether to fall back or re-raise
            error = exc
        finally:
            request.req = original

        fallback = error is not None or (
            response is not NO_RESPONSE and (response.res is None or not response.res.answer)
        )
        if self.fallback_upstream and fallback:
            request.log.debug("fallback to next resolver: %s", resolver_name(self.next_resolver))
            return self.resolve_next(request)

        if error is not None:
            raise error

        if response is NO_RESPONSE:
            request.log.debug("go to next resolver: %s", resolver_name(self.next_resolver))
            return self.resolve_next(request)

        if rewritten is not None and response.res is not None:
            message = response.res
            for index, name in enumerate(original_names):
                if index < len(message.question):
                    message.question[index] = _renamed(message.question[index], name)
                if index < len(message.answer):
                    message.answer[index] = _renamed(message.answer[index], name)
        return response


def new_rewriter_resolver(config: RewriteConfig, inner: ChainedResolver) -> ChainedResolver:
    """Wrap the inner resolver in a rewriter, or return it unchanged when nothing is rewritten."""
    if not config.rewrite:
        return inner
    return RewriterResolver(config, inner)