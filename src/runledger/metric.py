import re

from prometheus_client import Counter, CollectorRegistry

push_registry = CollectorRegistry()

api_call_count = Counter(
    "runledger_num_api_calls",
    "Total number of GitHub API calls",
    labelnames=["endpoint"],
    registry=push_registry,
)

rate_limit_wait_count = Counter(
    "runledger_num_rate_limit_waits",
    "Number of times a call waited for the rate limit to reset",
    registry=push_registry,
)

cache_counter = Counter(
    "runledger_cache",
    "Cache lookups by record kind and outcome",
    labelnames=["kind", "result"],
    registry=push_registry,
)

gather_error_count = Counter(
    "runledger_num_gather_errors",
    "Number of failed gathers",
    labelnames=["kind"],
    registry=push_registry,
)


_ENDPOINT_PATTERNS = [
    (re.compile(r"/graphql$"), "graphql"),
    (re.compile(r"/actions/runs/\d+/jobs"), "actions/runs/jobs"),
    (re.compile(r"/actions/runs/\d+/timing"), "actions/runs/timing"),
    (re.compile(r"/actions/runs/\d+/artifacts"), "actions/runs/artifacts"),
    (re.compile(r"/actions/artifacts/\d+/zip"), "actions/artifacts/zip"),
    (re.compile(r"/actions/runs/\d+$"), "actions/runs"),
    (re.compile(r"/commits/[^/]+/check-runs"), "check-runs"),
    (re.compile(r"/pulls/\d+/commits"), "pulls/commits"),
    (re.compile(r"/pulls/\d+$"), "pulls"),
    (re.compile(r"/commits/[^/]+$"), "commits"),
]


def _normalize_api_endpoint(url: str) -> str:
    path = url.split("?", 1)[0].rstrip("/")
    for pattern, label in _ENDPOINT_PATTERNS:
        if pattern.search(path):
            return label
    return "other"


def record_api_call(endpoint: str) -> None:
    api_call_count.labels(endpoint=_normalize_api_endpoint(endpoint)).inc()
