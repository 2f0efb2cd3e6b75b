"""Resolver answering from a hosts file that is re-read periodically."""

from __future__ import annotations

import ipaddress
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import dns.message
import dns.rdatatype
import dns.reversename
import dns.rrset

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
from dnschain.custom_dns import is_supported_type

_LOG = logging.getLogger("dnschain.hosts_file_resolver")
_LOOPBACK4 = ipaddress.ip_network("127.0.0.0/8")
_LOOPBACK6 = ipaddress.ip_address("::1")
_MIN_COLUMN_COUNT = 2


@dataclass
class HostsFileConfig:
    """Hosts file location, answer TTL and refresh period in seconds, loopback filtering."""

    filepath: str = ""
    hosts_ttl: float = 3600.0
    refresh_period: float = 3600.0
    filter_loopback: bool = False


@dataclass
class Host:
    """One hosts file entry."""

    ip: IPAddress
    hostname: str
    aliases: list[str] = field(default_factory=list)


def _is_loopback(ip: IPAddress) -> bool:
    ip = normalize_ip(ip)
    if isinstance(ip, ipaddress.IPv4Address):
        return ip in _LOOPBACK4
    return ip == _LOOPBACK6


def _format_duration(seconds: float) -> str:
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)
    if seconds < 1:
        return f"{sign}{seconds * 1000:g}ms"
    whole_minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(whole_minutes), 60)
    secs_text = f"{int(secs)}s" if secs == int(secs) else f"{secs:g}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{secs_text}"
    if minutes:
        return f"{sign}{minutes}m{secs_text}"
    return f"{sign}{secs_text}"


class HostsFileResolver(ChainedResolver):
    """Answers A, AAAA and PTR queries from the entries of a hosts file."""

    def __init__(self, config: HostsFileConfig) -> None:
        self.filepath = config.filepath
        self.ttl = int(config.hosts_ttl)
        self.refresh_period = config.refresh_period
        self.filter_loopback = config.filter_loopback
        self.hosts: list[Host] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        try:
            self.parse_hosts_file()
        except OSError:
            _LOG.warning("cannot parse hosts file: %s, hosts file resolving is disabled", self.filepath)
            self.filepath = ""
        else:
            if self.refresh_period > 0:
                self._thread = threading.Thread(target=self._periodic_update, daemon=True)
                self._thread.start()

    def __enter__(self) -> "HostsFileResolver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Stop the periodic refresh."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def parse_hosts_file(self) -> None:
        """Read the hosts file and replace the known entries; raises OSError if unreadable."""
        if not self.filepath:
            return
        text = Path(self.filepath).read_text(encoding="utf-8", errors="replace")
        hosts = []
        for line in text.split("\n"):
            trimmed = line.strip()
            if not trimmed or trimmed.startswith("#"):
                continue
            fields = trimmed.split("#", 1)[0].split()
            if len(fields) < _MIN_COLUMN_COUNT:
                continue
            if "%" in fields[0]:
                continue
            ip = parse_ip(fields[0])
            if ip is None:
                continue
            if self.filter_loopback and _is_loopback(ip):
                continue
            hosts.append(Host(ip=ip, hostname=fields[1], aliases=fields[2:]))
        self.hosts = hosts

    def _periodic_update(self) -> None:
        while not self._stop.wait(self.refresh_period):
            _LOG.debug("refreshing hosts file %s", self.filepath)
            try:
                self.parse_hosts_file()
            except OSError as exc:
                _LOG.error("can't refresh hosts file: %s", exc)

    def _handle_reverse_dns(self, request: Request) -> Optional[Response]:
        question = request.req.question[0]
        if question.rdtype != dns.rdatatype.PTR:
            return None
        wanted = question.name.to_text()
        for host in self.hosts:
            reverse = dns.reversename.from_address(str(normalize_ip(host.ip))).to_text()
            if reverse == wanted:
                response = dns.message.make_response(request.req)
                response.answer.extend(
                    create_ptr_answer(question, name, self.ttl) for name in (host.hostname, *host.aliases)
                )
                return Response(res=response, rtype=ResponseType.HOSTSFILE, reason="HOSTS FILE")
        return None

    def _host_answers(self, host: Host, domain: str, question: dns.rrset.RRset) -> list[dns.rrset.RRset]:
        if not is_supported_type(host.ip, question.rdtype):
            return []
        matches = [name for name in (host.hostname, *host.aliases) if name == domain]
        return [create_answer_from_question(question, host.ip, self.ttl) for _ in matches]

    def resolve(self, request: Request) -> Response:
        if not self.filepath:
            return self.resolve_next(request)

        reverse = self._handle_reverse_dns(request)
        if reverse is not None:
            return reverse

        if self.hosts:
            question = request.req.question[0]
            domain = extract_domain(question)
            response = dns.message.make_response(request.req)
            for host in self.hosts:
                response.answer.extend(self._host_answers(host, domain, question))
            if response.answer:
                request.log.debug(
                    "returning hosts file entry: domain=%s answer=%s", domain, answer_to_string(response.answer)
                )
                return Response(res=response, rtype=ResponseType.HOSTSFILE, reason="HOSTS FILE")

        request.log.debug("go to next resolver: %s", resolver_name(self.next_resolver))
        return self.resolve_next(request)

    def configuration(self) -> list[str]:
        if not self.filepath or not self.hosts:
            return ["deactivated"]
        return [
            f"hosts file path: {self.filepath}",
            f"hosts TTL: {self.ttl}",
            f"hosts refresh period: {_format_duration(self.refresh_period)}",
            f"filter loopback addresses: {'true' if self.filter_loopback else 'false'}",
        ]