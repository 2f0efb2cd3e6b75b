"""Resolver that ends a branch of the chain without answering."""

from __future__ import annotations

from dnschain.base import Request, Resolver, Response

NO_RESPONSE = Response()


class NoOpResolver(Resolver):
    """Always returns the shared empty response."""

    def resolve(self, request: Request) -> Response:
        request.log.debug("end of resolver branch, returning no response")
        return NO_RESPONSE

    def configuration(self) -> list[str]:
        return []