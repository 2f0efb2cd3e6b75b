"""Resolver attaching Extended DNS Error information to responses."""

from __future__ import annotations

from dataclasses import dataclass

import dns.edns

from dnschain.base import ChainedResolver, Request, Response, ResponseType

_CODES = {
    ResponseType.RESOLVED: dns.edns.EDECode.OTHER,
    ResponseType.CACHED: dns.edns.EDECode.CACHED_ERROR,
    ResponseType.CONDITIONAL: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.CUSTOMDNS: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.HOSTSFILE: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.NOTFQDN: dns.edns.EDECode.BLOCKED,
    ResponseType.BLOCKED: dns.edns.EDECode.BLOCKED,
    ResponseType.FILTERED: dns.edns.EDECode.FILTERED,
}


@dataclass
class EdeConfig:
    """Whether Extended DNS Errors are added."""

    enable: bool = False


def extended_error_code(response_type: ResponseType) -> int:
    """EDE info code describing the response type."""
    return _CODES.get(response_type, dns.edns.EDECode.OTHER)


def add_extra_reasoning(response: Response) -> None:
    """Add an EDE option carrying the response reason, unless the code is 'other'."""
    code = extended_error_code(response.rtype)
    if code <= 0 or response.res is None:
        return
    message = response.res
    options = list(message.options) + [dns.edns.EDEOption(code, response.reason)]
    if message.edns >= 0:
        message.use_edns(message.edns, message.ednsflags, message.payload, options=options)
    else:
        message.use_edns(0, options=options)


class EdeResolver(ChainedResolver):
    """Adds EDE options to responses coming back from the chain."""

    def __init__(self, config: EdeConfig) -> None:
        self.config = config

    def resolve(self, request: Request) -> Response:
        response = self.resolve_next(request)
        if self.config.enable:
            add_extra_reasoning(response)
        return response

    def configuration(self) -> list[str]:
        return ["activated" if self.config.enable else "deactivated"]