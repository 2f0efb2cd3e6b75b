# dnschain

`dnschain` builds a DNS resolver out of small, independent stages that are
linked into a chain. Each stage either answers a request itself or hands it
on to the next one. Messages are `dnspython` messages; DNS-over-HTTPS uses
`httpx`.

## Installation

```
pip install dnschain
```

To run the test suite:

```
pip install "dnschain[test]"
pytest
```

## Core types (`dnschain.base`)

- `Request` holds the query message (`req`), the client address
  (`client_ip`), client names (`client_names`), a client id
  (`request_client_id`), a logger (`log`), a timestamp and the
  `RequestProtocol` (`UDP` or `TCP`).
- `Response` holds the reply message (`res`), a `ResponseType` (`rtype`, for
  example `RESOLVED`, `CUSTOMDNS`, `HOSTSFILE`, `FILTERED`, `NOTFQDN`,
  `CONDITIONAL`) and a `reason` text.
- `Resolver` is the abstract base with `resolve(request)` and
  `configuration()`; `ChainedResolver` adds `next_resolver` and
  `resolve_next(request)`.
- `chain(*resolvers)` links the stages in order and returns the first one.
- `resolver_name(resolver)` returns a stage's own `name()` if it has one,
  otherwise its class name (`default_name`).
- `new_request`, `new_request_with_client` and `new_request_with_client_id`
  build requests; `extract_domain`, `create_answer_from_question` and
  `answer_to_string` help with questions and answers.

## Stages

| Module | Class | What it does |
| --- | --- | --- |
| `dnschain.filtering` | `FilteringResolver` | Answers the query types in `FilteringConfig.query_types` with an empty NOERROR reply |
| `dnschain.fqdn_only` | `FqdnOnlyResolver` | When enabled, answers names without a dot with NXDOMAIN |
| `dnschain.ede` | `EdeResolver` | When `EdeConfig.enable` is set, adds an Extended DNS Error option carrying the response reason (not for plain resolved answers) |
| `dnschain.custom_dns` | `CustomDNSResolver` | Answers A, AAAA and PTR queries from a name-to-address mapping; sub-domains match too |
| `dnschain.hosts_file` | `HostsFileResolver` | Answers from a hosts file, re-read every `refresh_period` seconds until `close()` |
| `dnschain.rewriter` | `RewriterResolver` | Rewrites domain suffixes for an inner resolver, then continues with the normal chain if it gave no answer |
| `dnschain.metrics` | `MetricsResolver` | Counts queries, responses and errors and records durations in in-memory `Counter` and `Histogram` objects |
| `dnschain.upstream` | `UpstreamResolver` | Sends the request to one server over UDP/TCP, TLS or HTTPS, retrying up to three times on timeouts |
| `dnschain.parallel_best` | `ParallelBestResolver` | Picks two upstreams of the client's group at random (recently failing ones weigh less), asks both at once and keeps the first good answer |
| `dnschain.conditional` | `ConditionalUpstreamResolver` | Sends chosen domains (and `.` for single-label names) to their own upstreams |
| `dnschain.client_names` | `ClientNamesResolver` | Sets the client names from the client id, a fixed mapping or a reverse lookup; results are cached for an hour (`flush_cache()` clears them) |
| `dnschain.query_logging` | `QueryLoggingResolver` | Hands each answered query to a log writer on a background thread |
| `dnschain.noop` | `NoOpResolver` | Ends a branch of the chain by returning the shared empty response |

`new_rewriter_resolver(config, inner)` returns the inner resolver unchanged
when no rewrites are configured.

Upstreams are described by `dnschain.upstream.Upstream`; `parse_upstream`
reads `host[:port]`, `tcp+udp:host`, `tcp-tls:host[:port]` and
`https://host[:port][/path]`. Upstream host names are looked up with the
system resolver unless `UpstreamResolver` is given a `host_resolver`
callable.

## Example

```python
from dnschain.base import chain, new_request_with_client
from dnschain.custom_dns import CustomDNSConfig, CustomDNSResolver
from dnschain.filtering import FilteringConfig, FilteringResolver
from dnschain.fqdn_only import FqdnOnlyResolver
from dnschain.parallel_best import ParallelBestResolver
from dnschain.upstream import parse_upstream

upstreams = {"default": [parse_upstream("9.9.9.9"), parse_upstream("1.1.1.1")]}

resolver = chain(
    FqdnOnlyResolver(enabled=True),
    FilteringResolver(FilteringConfig(query_types={"AAAA"})),
    CustomDNSResolver(CustomDNSConfig(mapping={"printer.lan": ["192.168.1.20"]})),
    ParallelBestResolver(upstreams, timeout=2.0, verify=False, strict=False),
)

request = new_request_with_client("printer.lan.", "A", "192.168.1.10", "laptop")
response = resolver.resolve(request)
print(response.rtype, response.reason)
```

Each stage reports its setup through `configuration()`, a list of readable
lines.

## Errors

Stages signal failure by raising. `dnschain.upstream.UpstreamError` is raised
when an upstream cannot be reached or returns something unusable;
`ParallelBestResolver` raises `ValueError` when no `default` group is
configured, or, with `strict=True` and `verify=True`, when no upstream of a
group passes its test query.

## Query logging

`QueryLoggingResolver` builds a `ConsoleWriter` (application log) or a
`NoneWriter` (discards entries) itself. For any other `QueryLogType` it calls
the `writer_factory` it is given, which must return a `QueryLogWriter`. If
no writer can be created within `creation_attempts`, the console writer is
used. Entries are queued (at most 1000); when the queue is full, new entries
are dropped. With `log_retention_days` above zero, the writer's `clean_up()`
is called every twelve hours. `close()` writes pending entries and stops the
background threads.

## Testing against a local server

`dnschain.mocks.MockUDPUpstreamServer` runs a small UDP DNS server on a free
local port. Configure it with `with_answer_rr(...)` (records in zone-file
notation), `with_answer_msg(message)`, `with_answer_error(rcode)` or
`with_answer_fn(fn)`; a function returning `None` makes the server send an
invalid reply. `start()` returns an `Upstream` for it, `call_count` tells how
many requests were answered, and `close()` stops it.

## What it does not do

- It does not listen for DNS clients: there is no server and no command;
  requests are built and passed to `resolve()` in code.
- It has no blocking lists and no answer cache.
- It ships no CSV or database query log writers; those types need a
  `writer_factory`.
- Metrics live in memory only; nothing serves them over HTTP.