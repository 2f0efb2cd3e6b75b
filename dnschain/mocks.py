"""A local UDP DNS server with scripted answers, for exercising resolvers."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Callable, Optional

import dns.exception
import dns.message
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from dnschain.upstream import NetProtocol, Upstream

_LOG = logging.getLogger("dnschain.mocks")
_DEFAULT_TTL = 3600
_BUFFER_SIZE = 65535

AnswerFn = Callable[[dns.message.Message], Optional[dns.message.Message]]


def _parse_rr(text: str) -> tuple[dns.name.Name, int, dns.rdata.Rdata]:
    tokens = text.split()
    if len(tokens) < 3:
        raise ValueError(f"can't create RR from {text!r}")
    try:
        name = dns.name.from_text(tokens[0])
        rest = tokens[1:]
        ttl = _DEFAULT_TTL
        rdclass = dns.rdataclass.IN
        for _ in range(2):
            if rest and rest[0].isdigit():
                ttl = int(rest.pop(0))
            elif rest:
                try:
                    rdclass = dns.rdataclass.from_text(rest[0])
                    rest.pop(0)
                except dns.exception.DNSException:
                    pass
        if not rest:
            raise ValueError(f"missing record type in {text!r}")
        rdtype = dns.rdatatype.from_text(rest.pop(0))
        rdata = dns.rdata.from_text(rdclass, rdtype, " ".join(rest), origin=dns.name.root)
    except dns.exception.DNSException as exc:
        raise ValueError(f"can't create RR from {text!r}: {exc}") from exc
    return name, ttl, rdata


def _as_reply(response: dns.message.Message, request: dns.message.Message) -> dns.message.Message:
    reply = dns.message.make_response(request)
    reply.answer = list(response.answer)
    reply.authority = list(response.authority)
    reply.additional = list(response.additional)
    rcode = response.rcode()
    if rcode:
        reply.set_rcode(rcode)
    return reply


class MockUDPUpstreamServer:
    """UDP DNS server on localhost answering with a configured function."""

    def __init__(self) -> None:
        self._answer_fn: AnswerFn = lambda request: dns.message.Message()
        self._lock = threading.Lock()
        self._calls = 0
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def __enter__(self) -> "MockUDPUpstreamServer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def call_count(self) -> int:
        """Number of requests answered so far."""
        with self._lock:
            return self._calls

    def with_answer_rr(self, *answers: str) -> "MockUDPUpstreamServer":
        """Answer every request with the records given in zone-file notation."""
        records = [_parse_rr(answer) for answer in answers]

        def answer(request: dns.message.Message) -> dns.message.Message:
            rrsets: dict[tuple, dns.rrset.RRset] = {}
            for name, ttl, rdata in records:
                key = (name, rdata.rdclass, rdata.rdtype)
                rrset = rrsets.setdefault(key, dns.rrset.RRset(name, rdata.rdclass, rdata.rdtype))
                rrset.add(rdata, ttl)
            message = dns.message.Message()
            message.answer = list(rrsets.values())
            return message

        self._answer_fn = answer
        return self

    def with_answer_msg(self, answer: dns.message.Message) -> "MockUDPUpstreamServer":
        """Answer every request with the given message."""
        self._answer_fn = lambda request: answer
        return self

    def with_answer_error(self, rcode: int) -> "MockUDPUpstreamServer":
        """Answer every request with an empty message carrying the response code."""

        def answer(request: dns.message.Message) -> dns.message.Message:
            message = dns.message.Message()
            message.set_rcode(rcode)
            return message

        self._answer_fn = answer
        return self

    def with_answer_fn(self, fn: AnswerFn) -> "MockUDPUpstreamServer":
        """Answer with whatever the function returns; None makes the server send garbage."""
        self._answer_fn = fn
        return self

    def start(self) -> Upstream:
        """Start serving in the background and return the upstream to reach it."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(("127.0.0.1", 0))
        sock.settimeout(0.05)
        self._socket = sock
        self._stop.clear()
        self._thread = threading.Thread(target=self._serve, args=(sock,), daemon=True)
        self._thread.start()
        host, port = sock.getsockname()
        return Upstream(net=NetProtocol.TCP_UDP, host=host, port=port)

    def _serve(self, sock: socket.socket) -> None:
        while not self._stop.is_set():
            try:
                data, address = sock.recvfrom(_BUFFER_SIZE)
            except TimeoutError:
                continue
            except OSError:
                break

            try:
                request = dns.message.from_wire(data)
            except dns.exception.DNSException as exc:
                _LOG.error("can't deserialize message: %s", exc)
                continue

            try:
                response = self._answer_fn(request)
            except Exception:  # noqa: BLE001 - keep serving whatever the answer function does
                _LOG.exception("answer function failed")
                continue

            with self._lock:
                self._calls += 1

            if response is None:
                payload = b"dummy"
            else:
                try:
                    payload = _as_reply(response, request).to_wire()
                except dns.exception.DNSException as exc:
                    _LOG.error("can't serialize message: %s", exc)
                    continue
            try:
                sock.sendto(payload, address)
            except OSError:
                break

    def close(self) -> None:
        """Stop serving and release the socket."""
        self._stop.set()
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None