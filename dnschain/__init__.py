"""Composable chain of DNS resolvers, with upstream clients and a local test server."""

__version__ = "0.1.0"

__all__ = [
    "base",
    "noop",
    "filtering",
    "fqdn_only",
    "ede",
    "custom_dns",
    "hosts_file",
    "rewriter",
    "metrics",
    "upstream",
    "mocks",
    "parallel_best",
    "conditional",
    "client_names",
    "query_logging",
]