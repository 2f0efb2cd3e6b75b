"""Resolver sending each request to two upstreams at once and using the first good answer."""

from __future__ import annotations

import fnmatch
import ipaddress
import logging
import queue
import random
import threading
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import dns.rdatatype

from dnschain.base import Request, Resolver, Response, answer_to_string, new_request, ResponseType
from dnschain.upstream import Upstream, UpstreamError, UpstreamResolver

DEFAULT_GROUP = "default"
_RESOLVER_COUNT = 2
_ERROR_WINDOW = 60
_ERROR_MEMORY_SECONDS = 3600.0
_DEFAULT_TIMEOUT = 2.0

_LOG = logging.getLogger("dnschain.parallel_best_resolver")


@dataclass(eq=False)
class _ResolverStatus:
    resolver: Resolver
    last_error_time: float = 0.0


def client_name_matches_group(group: str, client_name: str) -> bool:
    """True if the client name matches the group name, which may hold wildcards."""
    return fnmatch.fnmatchcase(client_name.lower(), group.lower())


def _cidr_contains(cidr: str, ip) -> bool:
    if ip is None or "/" not in cidr:
        return False
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError:
        return False
    return ip in network


def _passes_test_query(resolver: UpstreamResolver) -> bool:
    try:
        response = resolver.resolve(new_request("github.com.", dns.rdatatype.A))
    except Exception as exc:  # noqa: BLE001 - any failure means the upstream is not usable
        _LOG.warning("test resolve of upstream server failed: %s", exc)
        return False
    if response.rtype is not ResponseType.RESOLVED:
        _LOG.warning("test resolve of upstream server failed: unexpected response type %s", response.rtype)
        return False
    return True


def weighted_random(resolvers: Sequence[_ResolverStatus], exclude: Optional[Resolver]) -> _ResolverStatus:
    """Pick one resolver at random; resolvers that failed recently weigh less."""
    now = time.time()
    choices: list[_ResolverStatus] = []
    weights: list[int] = []
    for status in resolvers:
        weight = float(_ERROR_WINDOW)
        since = now - status.last_error_time
        if since < _ERROR_MEMORY_SECONDS:
            weight = max(1.0, weight - (_ERROR_WINDOW - since / 60.0))
        if status.resolver is not exclude:
            choices.append(status)
            weights.append(int(weight))
    if not choices:
        raise ValueError("no resolver left to choose from")
    return random.choices(choices, weights=weights)[0]


def pick_random(resolvers: Sequence[_ResolverStatus]) -> tuple[_ResolverStatus, _ResolverStatus]:
    """Pick two different resolvers at random."""
    first = weighted_random(resolvers, None)
    second = weighted_random(resolvers, first.resolver)
    return first, second


def _resolve_into(request: Request, status: _ResolverStatus, results: queue.Queue) -> None:
    try:
        response = status.resolver.resolve(request)
    except Exception as exc:  # noqa: BLE001 - handed over to the waiting caller
        status.last_error_time = time.time()
        results.put((None, exc))
    else:
        results.put((response, None))


class ParallelBestResolver(Resolver):
    """Delegates to two upstreams in parallel and returns the fastest successful answer."""

    def __init__(
        self,
        upstream_resolvers: Mapping[str, Sequence[Upstream]],
        timeout: float = _DEFAULT_TIMEOUT,
        verify: bool = True,
        strict: bool = False,
    ) -> None:
        self.resolvers_per_client: dict[str, list[_ResolverStatus]] = {}
        for name, upstreams in upstream_resolvers.items():
            statuses: list[_ResolverStatus] = []
            failures = 0
            for upstream in upstreams:
                try:
                    resolver = UpstreamResolver(upstream, timeout, verify=verify)
                except UpstreamError as exc:
                    _LOG.warning("upstream group %s: %s", name, exc)
                    failures += 1
                    continue
                if verify and not _passes_test_query(resolver):
                    failures += 1
                statuses.append(_ResolverStatus(resolver))
            if verify and strict and failures == len(upstreams):
                raise ValueError(f"unable to reach any DNS resolvers configured for resolver group {name}")
            self.resolvers_per_client[name] = statuses

        if not self.resolvers_per_client.get(DEFAULT_GROUP):
            raise ValueError(
                "no external DNS resolvers configured as default upstream resolvers. "
                f"Please configure at least one under '{DEFAULT_GROUP}' configuration name"
            )

    def __str__(self) -> str:
        groups = [
            f"{name} ({','.join(str(status.resolver) for status in statuses)})"
            for name, statuses in self.resolvers_per_client.items()
        ]
        return f"parallel upstreams '{'; '.join(groups)}'"

    def configuration(self) -> list[str]:
        lines = ["upstream resolvers:"]
        for name, statuses in self.resolvers_per_client.items():
            lines.append(f"- {name}")
            lines.extend(f"  - {status.resolver}" for status in statuses)
        return lines

    def resolvers_for_client(self, request: Request) -> list[_ResolverStatus]:
        """Resolvers for the client's names, address or network, else the default group."""
        result: list[_ResolverStatus] = []
        for client_name in request.client_names:
            for group, statuses in self.resolvers_per_client.items():
                if client_name_matches_group(group, client_name):
                    result.extend(statuses)

        if request.client_ip is not None:
            result.extend(self.resolvers_per_client.get(str(request.client_ip), []))

        for group, statuses in self.resolvers_per_client.items():
            if _cidr_contains(group, request.client_ip):
                result.extend(statuses)

        if not result:
            result = list(self.resolvers_per_client[DEFAULT_GROUP])
        return result

    def resolve(self, request: Request) -> Response:
        resolvers = self.resolvers_for_client(request)
        if len(resolvers) == 1:
            request.log.debug("delegating to resolver %s", resolvers[0].resolver)
            return resolvers[0].resolver.resolve(request)

        first, second = pick_random(resolvers)
        request.log.debug("using %s and %s as resolver", first.resolver, second.resolver)

        results: queue.Queue = queue.Queue()
        for status in (first, second):
            threading.Thread(target=_resolve_into, args=(request, status, results), daemon=True).start()

        errors: list[Exception] = []
        while len(errors) < _RESOLVER_COUNT:
            response, error = results.get()
            if error is not None:
                request.log.debug("resolution failed from resolver, cause: %s", error)
                errors.append(error)
                continue
            request.log.debug(
                "using response from resolver: answer=%s",
                answer_to_string(response.res.answer) if response.res is not None else "",
            )
            return response

        raise UpstreamError(
            f"resolution was not successful, used resolvers: '{first.resolver}' and "
            f"'{second.resolver}' errors: {[str(error) for error in errors]}"
        )