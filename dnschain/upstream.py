"""Resolver forwarding requests to an external DNS server over UDP/TCP, TLS or HTTPS."""

from __future__ import annotations

import ipaddress
import logging
import socket
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import dns.exception
import dns.message
import dns.query
import dns.rcode
import httpx

from dnschain.base import (
    IPAddress,
    Request,
    RequestProtocol,
    Resolver,
    Response,
    answer_to_string,
    parse_ip,
)

DNS_CONTENT_TYPE = "application/dns-message"
_DEFAULT_TIMEOUT = 2.0
_RETRY_ATTEMPTS = 3
_RETRY_DELAY = 0.1

_LOG = logging.getLogger("dnschain.upstream_resolver")


class NetProtocol(Enum):
    """Transport used to reach an upstream server."""

    TCP_UDP = "tcp+udp"
    TCP_TLS = "tcp-tls"
    HTTPS = "https"

    def __str__(self) -> str:
        return self.value


_DEFAULT_PORTS = {
    NetProtocol.TCP_UDP: 53,
    NetProtocol.TCP_TLS: 853,
    NetProtocol.HTTPS: 443,
}


def _format_host(host: str) -> str:
    return f"[{host}]" if ":" in host else host


@dataclass(frozen=True)
class Upstream:
    """An external DNS server: protocol, host, port and (for HTTPS) path."""

    net: NetProtocol = NetProtocol.TCP_UDP
    host: str = ""
    port: Optional[int] = None
    path: str = ""

    def __post_init__(self) -> None:
        if self.port is None:
            object.__setattr__(self, "port", _DEFAULT_PORTS[self.net])

    def __str__(self) -> str:
        if self.net is NetProtocol.HTTPS:
            return f"https://{_format_host(self.host)}:{self.port}{self.path}"
        return f"{self.net.value}:{_format_host(self.host)}:{self.port}"


def _parse_port(text: str) -> int:
    if not text.isdigit():
        raise ValueError(f"invalid port: {text!r}")
    port = int(text)
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range: {port}")
    return port


def parse_upstream(text: str) -> Upstream:
    """Parse '[net:]host[:port]' or 'https://host[:port][/path]' into an Upstream."""
    rest = text.strip()
    net = NetProtocol.TCP_UDP
    for protocol, prefix in (
        (NetProtocol.HTTPS, "https://"),
        (NetProtocol.TCP_TLS, "tcp-tls:"),
        (NetProtocol.TCP_UDP, "tcp+udp:"),
    ):
        if rest.startswith(prefix):
            net = protocol
            rest = rest[len(prefix):]
            break

    path = ""
    if net is NetProtocol.HTTPS:
        host_port, slash, tail = rest.partition("/")
        if slash:
            path = "/" + tail
        rest = host_port
    elif "/" in rest:
        raise ValueError(f"path is only allowed for https upstreams: {text!r}")

    port: Optional[int] = None
    if rest.startswith("["):
        host, bracket, tail = rest[1:].partition("]")
        if not bracket:
            raise ValueError(f"missing ']' in upstream: {text!r}")
        if tail:
            if not tail.startswith(":"):
                raise ValueError(f"invalid upstream: {text!r}")
            port = _parse_port(tail[1:])
    elif rest.count(":") == 1:
        host, _, port_text = rest.partition(":")
        port = _parse_port(port_text)
    else:
        host = rest

    if not host:
        raise ValueError(f"missing host in upstream: {text!r}")
    return Upstream(net=net, host=host, port=port, path=path)


class UpstreamError(Exception):
    """Failure talking to an upstream server."""

    def __init__(self, message: str, *, timeout: bool = False, dial: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout
        self.dial = dial


def _split_host_port(url: str) -> tuple[str, int]:
    host, _, port = url.rpartition(":")
    return host.strip("[]"), int(port)


def _tls_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


class DnsUpstreamClient:
    """Exchanges DNS messages over UDP/TCP, or over TCP with TLS."""

    def __init__(self, timeout: float, tls: bool = False, server_name: str = "") -> None:
        self.timeout = timeout
        self.tls = tls
        self.server_name = server_name
        self.use_udp = not tls
        self._ssl_context = _tls_context() if tls else None

    def fmt_url(self, ip: IPAddress, port: int, path: str = "") -> str:
        return f"{_format_host(str(ip))}:{port}"

    def _exchange(self, transport: str, message: dns.message.Message, host: str, port: int):
        start = time.monotonic()
        try:
            if transport == "udp":
                response = dns.query.udp(message, host, timeout=self.timeout, port=port)
            elif self.tls:
                response = dns.query.tls(
                    message,
                    host,
                    timeout=self.timeout,
                    port=port,
                    ssl_context=self._ssl_context,
                    server_hostname=self.server_name or None,
                )
            else:
                response = dns.query.tcp(message, host, timeout=self.timeout, port=port)
        except (dns.exception.Timeout, TimeoutError) as exc:
            raise UpstreamError(f"{transport} {host}:{port}: i/o timeout", timeout=True) from exc
        except ConnectionRefusedError as exc:
            raise UpstreamError(f"dial {transport} {host}:{port}: {exc}", dial=True) from exc
        except (dns.exception.DNSException, OSError, ValueError, EOFError) as exc:
            raise UpstreamError(f"{transport} {host}:{port}: {exc}") from exc
        return response, time.monotonic() - start

    def call_external(self, message: dns.message.Message, url: str, protocol: RequestProtocol):
        """Send the message; returns the response and the round-trip time in seconds."""
        host, port = _split_host_port(url)
        if protocol is RequestProtocol.TCP:
            try:
                return self._exchange("tcp", message, host, port)
            except UpstreamError as exc:
                if exc.dial and self.use_udp:
                    return self._exchange("udp", message, host, port)
                raise
        if self.use_udp:
            return self._exchange("udp", message, host, port)
        return self._exchange("tcp", message, host, port)


class HttpUpstreamClient:
    """Exchanges DNS messages with a DNS-over-HTTPS server."""

    def __init__(
        self,
        host: str,
        timeout: float,
        user_agent: str = "",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = httpx.Client(timeout=timeout, transport=transport, verify=_tls_context())

    def close(self) -> None:
        """Release the underlying HTTP connections."""
        self._client.close()

    def fmt_url(self, ip: IPAddress, port: int, path: str = "") -> str:
        return f"https://{_format_host(str(ip))}:{port}{path}"

    def call_external(self, message: dns.message.Message, url: str, protocol: RequestProtocol):
        """POST the message; returns the response and the round-trip time in seconds."""
        start = time.monotonic()
        try:
            raw = message.to_wire()
        except dns.exception.DNSException as exc:
            raise UpstreamError(f"can't pack message: {exc}") from exc

        headers = {"Content-Type": DNS_CONTENT_TYPE, "Host": self.host}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        try:
            http_response = self._client.post(
                url, content=raw, headers=headers, extensions={"sni_hostname": self.host}
            )
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"can't perform https request: i/o timeout ({exc})", timeout=True) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"can't perform https request: {exc}") from exc

        if http_response.status_code != 200:
            raise UpstreamError(
                f"http return code should be 200, but received {http_response.status_code}"
            )
        content_type = http_response.headers.get("content-type", "")
        if content_type != DNS_CONTENT_TYPE:
            raise UpstreamError(
                f"http return content type should be '{DNS_CONTENT_TYPE}', but was '{content_type}'"
            )
        try:
            response = dns.message.from_wire(http_response.content)
        except dns.exception.DNSException as exc:
            raise UpstreamError(f"can't unpack message: {exc}") from exc
        return response, time.monotonic() - start


def _system_host_resolver(host: str) -> list[IPAddress]:
    ip = parse_ip(host)
    if ip is not None:
        return [ip]
    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError, ValueError) as exc:
        raise UpstreamError(f"lookup {host}: no such host ({exc})") from exc
    found: list[IPAddress] = []
    for info in infos:
        address = parse_ip(str(info[4][0]).split("%", 1)[0])
        if address is not None and address not in found:
            found.append(address)
    return found


def _create_client(upstream: Upstream, timeout: float):
    if upstream.net is NetProtocol.HTTPS:
        return HttpUpstreamClient(upstream.host, timeout)
    if upstream.net is NetProtocol.TCP_TLS:
        return DnsUpstreamClient(timeout, tls=True, server_name=upstream.host)
    if upstream.net is NetProtocol.TCP_UDP:
        return DnsUpstreamClient(timeout)
    raise ValueError(f"invalid protocol {upstream.net}")


class _IPRing:
    def __init__(self, ips: Sequence[IPAddress]) -> None:
        self._ips = list(ips)
        self._index = 0

    def current(self) -> IPAddress:
        return self._ips[self._index]

    def advance(self) -> None:
        self._index = (self._index + 1) % len(self._ips)


class UpstreamResolver(Resolver):
    """Sends requests to one external DNS server, retrying on timeouts."""

    def __init__(
        self,
        upstream: Upstream,
        timeout: float = _DEFAULT_TIMEOUT,
        host_resolver: Optional[Callable[[str], Sequence[IPAddress]]] = None,
        verify: bool = True,
    ) -> None:
        self.upstream = upstream
        self.timeout = timeout
        self.host_resolver = host_resolver or _system_host_resolver
        self.client = _create_client(upstream, timeout)
        if verify:
            self._upstream_ips()

    def __str__(self) -> str:
        return f"upstream '{self.upstream}'"

    def configuration(self) -> list[str]:
        return []

    def _upstream_ips(self) -> list[IPAddress]:
        try:
            ips = list(self.host_resolver(self.upstream.host))
        except UpstreamError:
            raise
        except OSError as exc:
            raise UpstreamError(f"lookup {self.upstream.host}: {exc}") from exc
        if not ips:
            raise UpstreamError(f"lookup {self.upstream.host}: no such host")
        return ips

    def resolve(self, request: Request) -> Response:
        ips = _IPRing(self._upstream_ips())
        for attempt in range(1, _RETRY_ATTEMPTS + 1):
            ip = ips.current()
            url = self.client.fmt_url(ip, self.upstream.port, self.upstream.path)
            try:
                message, rtt = self.client.call_external(request.req, url, request.protocol)
            except UpstreamError as exc:
                error = UpstreamError(
                    f"can't resolve request via upstream server {url}: {exc}", timeout=exc.timeout
                )
                if not exc.timeout or attempt == _RETRY_ATTEMPTS:
                    raise error from exc
                request.log.debug(
                    "%s, retrying... upstream=%s upstream_ip=%s attempt=%d/%d",
                    error,
                    self.upstream,
                    ip,
                    attempt,
                    _RETRY_ATTEMPTS,
                )
                ips.advance()
                time.sleep(_RETRY_DELAY)
                continue

            request.log.debug(
                "received response from upstream: answer=%s return_code=%s upstream=%s "
                "upstream_ip=%s protocol=%s net=%s response_time_ms=%d",
                answer_to_string(message.answer),
                dns.rcode.to_text(message.rcode()),
                self.upstream,
                ip,
                request.protocol,
                self.upstream.net,
                int(rtt * 1000),
            )
            return Response(res=message, reason=f"RESOLVED ({self.upstream})")
        raise UpstreamError(f"can't resolve request via upstream {self.upstream}")