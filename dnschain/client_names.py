"""Resolver determining client names from a mapping or by reverse DNS lookup."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import dns.rdatatype
import dns.reversename

from dnschain.base import (
    ChainedResolver,
    IPAddress,
    Request,
    Resolver,
    Response,
    new_message_with_question,
    normalize_ip,
    parse_ip,
)
from dnschain.upstream import Upstream, UpstreamResolver

_CACHE_TTL = 3600.0
_DEFAULT_TIMEOUT = 2.0


@dataclass
class ClientLookupConfig:
    """Upstream for reverse lookups, preferred name order and fixed name to address mapping."""

    upstream: Optional[Upstream] = None
    single_name_order: list = field(default_factory=list)
    client_name_ip_mapping: dict = field(default_factory=dict)


class _ExpiringCache:
    def __init__(self) -> None:
        self._items: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires = item
            if expires <= time.monotonic():
                del self._items[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._items[key] = (value, time.monotonic() + ttl)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def total_count(self) -> int:
        now = time.monotonic()
        with self._lock:
            return sum(1 for _, expires in self._items.values() if expires > now)


def _parse_ips(raw_ips) -> list[IPAddress]:
    parsed = []
    for raw in raw_ips:
        ip = parse_ip(raw)
        if ip is None:
            raise ValueError(f"invalid IP address: {raw!r}")
        parsed.append(normalize_ip(ip))
    return parsed


def _names_from_answer(answer, fallback_ip: IPAddress) -> list[str]:
    names = [
        rdata.target.to_text().removesuffix(".")
        for rrset in answer
        if rrset.rdtype == dns.rdatatype.PTR
        for rdata in rrset
    ]
    return names or [str(fallback_ip)]


class ClientNamesResolver(ChainedResolver):
    """Sets the client names of a request, then hands it to the next resolver."""

    def __init__(self, config: ClientLookupConfig, timeout: float = _DEFAULT_TIMEOUT) -> None:
        self.external_resolver: Optional[Resolver] = None
        if config.upstream is not None:
            self.external_resolver = UpstreamResolver(config.upstream, timeout)
        self.single_name_order = [int(order) for order in config.single_name_order]
        self.client_ip_mapping = {
            name: _parse_ips(ips) for name, ips in config.client_name_ip_mapping.items()
        }
        self._cache = _ExpiringCache()

    def configuration(self) -> list[str]:
        if self.external_resolver is None and not self.client_ip_mapping:
            return ["deactivated, use only IP address"]
        order = " ".join(str(i) for i in self.single_name_order)
        lines = [f'singleNameOrder = "[{order}]"']
        if self.external_resolver is not None:
            lines.append(f'externalResolver = "{self.external_resolver}"')
        lines.append(f"cache item count = {self._cache.total_count()}")
        if self.client_ip_mapping:
            lines.append("client IP mapping:")
            lines.extend(
                f"{name} -> [{' '.join(str(ip) for ip in ips)}]" for name, ips in self.client_ip_mapping.items()
            )
        return lines

    def resolve(self, request: Request) -> Response:
        names = self._client_names(request)
        request.client_names = names
        request.log.debug("client_names: %s", "; ".join(names))
        return self.resolve_next(request)

    def flush_cache(self) -> None:
        """Forget all cached client names."""
        self._cache.clear()

    def _client_names(self, request: Request) -> list[str]:
        if request.request_client_id:
            return [request.request_client_id]
        if request.client_ip is None:
            return []
        ip = normalize_ip(request.client_ip)
        key = str(ip)
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached)
        names = self._resolve_client_names(ip, request)
        self._cache.put(key, list(names), _CACHE_TTL)
        return names

    def _names_from_mapping(self, ip: IPAddress) -> list[str]:
        return [name for name, ips in self.client_ip_mapping.items() for mapped in ips if mapped == ip]

    def _resolve_client_names(self, ip: IPAddress, request: Request) -> list[str]:
        mapped = self._names_from_mapping(ip)
        if mapped:
            return mapped
        if self.external_resolver is None:
            return [str(ip)]

        reverse = dns.reversename.from_address(str(ip)).to_text()
        lookup = Request(req=new_message_with_question(reverse, dns.rdatatype.PTR), log=request.log)
        try:
            response = self.external_resolver.resolve(lookup)
        except Exception as exc:  # noqa: BLE001 - any failure falls back to the address
            request.log.error("can't resolve client name: %s", exc)
            return [str(ip)]

        answer = response.res.answer if response.res is not None else []
        names = _names_from_answer(answer, ip)

        if self.single_name_order:
            result: list[str] = []
            for position in self.single_name_order:
                if 0 < position <= len(names):
                    result = [names[position - 1]]
                    break
        else:
            result = names

        request.log.debug("resolved client name(s) from external resolver: %s", "; ".join(result))
        return result