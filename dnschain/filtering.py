"""Resolver answering configured query types with an empty result."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

import dns.message
import dns.rcode
import dns.rdatatype

from dnschain.base import ChainedResolver, Request, Response, ResponseType


@dataclass
class FilteringConfig:
    """Query types to drop."""

    query_types: frozenset = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        self.query_types = frozenset(_as_type(t) for t in self.query_types)


def _as_type(value) -> dns.rdatatype.RdataType:
    if isinstance(value, str):
        return dns.rdatatype.from_text(value)
    return dns.rdatatype.RdataType.make(value)


class FilteringResolver(ChainedResolver):
    """Returns NOERROR with no answer for filtered query types."""

    def __init__(self, config: FilteringConfig) -> None:
        self.query_types = config.query_types

    def resolve(self, request: Request) -> Response:
        if request.req.question[0].rdtype in self.query_types:
            response = dns.message.make_response(request.req)
            response.set_rcode(dns.rcode.NOERROR)
            return Response(res=response, rtype=ResponseType.FILTERED)
        return self.resolve_next(request)

    def configuration(self) -> list[str]:
        names: Iterable[str] = sorted(dns.rdatatype.to_text(t) for t in self.query_types)
        return [f"filtering query Types: '{', '.join(names)}'"]