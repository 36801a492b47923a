"""Prometheus metric inventory.

Every metric the service exports is declared here; the owning module
imports the one it needs and records at the point of action.

HTTP metrics are labelled by route template (``/v1/credentials/{credential_id}/verify``)
rather than raw path, so each verify call does not mint a fresh time series.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    # Issue and revoke wait for ledger finality, so the tail is long.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 60.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Credential protocol metrics
# ---------------------------------------------------------------------------

CREDENTIAL_OPERATIONS = Counter(
    "credential_operations_total",
    "Issue/revoke/enroll outcomes",
    ["operation", "outcome"],  # outcome: success | error code
)

EXTERNAL_CALL_DURATION = Histogram(
    "external_call_duration_seconds",
    "Latency of ledger and archive calls, including finality wait",
    ["store", "call"],  # store: ledger|archive
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0, 60.0, 120.0],
)

EXTERNAL_CALL_FAILURES = Counter(
    "external_call_failures_total",
    "Ledger and archive calls that raised",
    ["store", "call"],
)

VERIFICATION_VERDICTS = Counter(
    "verification_verdicts_total",
    "Verify outcomes by verdict",
    ["verdict"],  # valid | revoked | ledger_mismatch | not_found
)

PENDING_RECONCILIATIONS = Gauge(
    "pending_reconciliations",
    "Issue/revoke journal entries not yet reflected in the registry",
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)


@contextmanager
def track_external_call(store: str, call: str) -> Iterator[None]:
    """Time one ledger/archive call and count it if it raises."""
    start = time.monotonic()
    try:
        yield
    except Exception:
        EXTERNAL_CALL_FAILURES.labels(store=store, call=call).inc()
        raise
    finally:
        EXTERNAL_CALL_DURATION.labels(store=store, call=call).observe(
            time.monotonic() - start
        )
