"""Tests for the request context middleware.

Every response gets an X-Request-ID header (generated or echoed from the
request) and every log record emitted while handling it carries the id.
"""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from certchain.middleware.request_context import (
    _RequestContextFilter,
    install_request_context_filter,
    request_id_var,
)


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    req_id = resp.headers.get("x-request-id")
    assert req_id is not None
    uuid.UUID(req_id)  # raises ValueError if invalid


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    custom_id = "my-custom-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers.get("x-request-id") == custom_id


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    resp = client.get("/v1/subjects")  # No auth token -> 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_access_log_line_carries_request_id(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="certchain.middleware.request_context"):
        client.get("/health", headers={"X-Request-ID": "req-42"})

    access = [r for r in caplog.records if r.getMessage().startswith("GET /health")]
    assert access
    assert access[-1].request_id == "req-42"
    assert access[-1].status_code == 200


def test_filter_stamps_context_id() -> None:
    token = request_id_var.set("ctx-id")
    try:
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert _RequestContextFilter().filter(record) is True
        assert record.request_id == "ctx-id"
    finally:
        request_id_var.reset(token)


def test_install_filter_is_idempotent() -> None:
    root = logging.getLogger()
    handler = logging.StreamHandler()
    root.addHandler(handler)
    try:
        install_request_context_filter()
        install_request_context_filter()
        assert sum(isinstance(f, _RequestContextFilter) for f in handler.filters) == 1
    finally:
        root.removeHandler(handler)
