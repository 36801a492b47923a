"""HTTP ledger and archive clients against httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from certchain.core.errors import (
    ArchiveUnavailableError,
    LedgerRejectedError,
    LedgerUnavailableError,
)
from certchain.services.archive import HttpContentArchive
from certchain.services.ledger import HttpVerificationLedger

FP = "0x" + "ab" * 32


def _ledger(handler, **kwargs) -> HttpVerificationLedger:
    kwargs.setdefault("poll_interval", 0.0)
    return HttpVerificationLedger(
        "http://ledger.test",
        api_key="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _run(client, coro_fn):
    async def _go():
        try:
            return await coro_fn(client)
        finally:
            await client.close()

    return asyncio.run(_go())


# ---- ledger ----


def test_commit_waits_for_finality() -> None:
    statuses = iter(["pending", "pending", "finalized"])
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(f"{request.method} {request.url.path}")
        assert request.headers["authorization"] == "Bearer secret"
        if request.method == "POST":
            assert json.loads(request.content) == {"fingerprint": FP}
            return httpx.Response(202, json={"tx_ref": "0xtx1"})
        return httpx.Response(200, json={"status": next(statuses)})

    ref = _run(_ledger(handler), lambda c: c.commit(FP))

    assert ref == "0xtx1"
    assert seen == [
        "POST /commitments",
        "GET /transactions/0xtx1",
        "GET /transactions/0xtx1",
        "GET /transactions/0xtx1",
    ]


def test_commit_conflict_is_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"detail": "already committed"})

    with pytest.raises(LedgerRejectedError, match="already committed"):
        _run(_ledger(handler), lambda c: c.commit(FP))


def test_dropped_transaction_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"tx_ref": "0xtx2"})
        return httpx.Response(200, json={"status": "dropped"})

    with pytest.raises(LedgerUnavailableError, match="dropped"):
        _run(_ledger(handler), lambda c: c.revoke(FP))


def test_finality_timeout_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"tx_ref": "0xtx3"})
        return httpx.Response(200, json={"status": "pending"})

    with pytest.raises(LedgerUnavailableError, match="not finalized"):
        _run(_ledger(handler, confirm_timeout=0.0), lambda c: c.commit(FP))


def test_transport_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(LedgerUnavailableError):
        _run(_ledger(handler), lambda c: c.commit(FP))


def test_server_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(LedgerUnavailableError):
        _run(_ledger(handler), lambda c: c.is_valid(FP))


def test_is_valid_reads_commitment_state() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"/commitments/{FP}":
            return httpx.Response(200, json={"valid": True})
        return httpx.Response(404)

    assert _run(_ledger(handler), lambda c: c.is_valid(FP)) is True
    assert _run(_ledger(handler), lambda c: c.is_valid("0x" + "00" * 32)) is False


def test_grant_minter_posts_identity() -> None:
    identity = "0x" + "1" * 40

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.url.path == "/minters"
            assert json.loads(request.content) == {"identity": identity}
            return httpx.Response(202, json={"tx_ref": "0xtx4"})
        return httpx.Response(200, json={"status": "finalized"})

    assert _run(_ledger(handler), lambda c: c.grant_minter(identity)) == "0xtx4"


# ---- archive ----


def _archive(handler) -> HttpContentArchive:
    return HttpContentArchive(
        "http://pin.test",
        gateway_url="https://gateway.test/ipfs/",
        api_key="pin-key",
        transport=httpx.MockTransport(handler),
    )


def test_archive_put_returns_cid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/pinning/pinFileToIPFS"
        assert request.headers["authorization"] == "Bearer pin-key"
        assert b"CERT-1.json" in request.content
        return httpx.Response(200, json={"IpfsHash": "QmHash"})

    archive = _archive(handler)
    cid = _run(archive, lambda c: c.put(b"{}", filename="CERT-1.json"))

    assert cid == "QmHash"
    assert archive.resolve(cid) == "https://gateway.test/ipfs/QmHash"


def test_archive_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(ArchiveUnavailableError):
        _run(_archive(handler), lambda c: c.put(b"{}", filename="x.json"))


def test_archive_missing_hash_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(ArchiveUnavailableError, match="IpfsHash"):
        _run(_archive(handler), lambda c: c.put(b"{}", filename="x.json"))


# ---- malformed bodies ----


def _html(status: int = 200) -> httpx.Response:
    return httpx.Response(
        status, content=b"<html>gateway</html>", headers={"content-type": "text/html"}
    )


def test_non_json_commit_response_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _html()

    with pytest.raises(LedgerUnavailableError, match="non-JSON"):
        _run(_ledger(handler), lambda c: c.commit(FP))


def test_non_json_finality_response_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(202, json={"tx_ref": "0xtx5"})
        return _html()

    with pytest.raises(LedgerUnavailableError, match="non-JSON"):
        _run(_ledger(handler), lambda c: c.revoke(FP))


def test_non_json_validity_response_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _html()

    with pytest.raises(LedgerUnavailableError):
        _run(_ledger(handler), lambda c: c.is_valid(FP))


def test_json_array_body_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(202, json=["0xtx6"])

    with pytest.raises(LedgerUnavailableError, match="unexpected body"):
        _run(_ledger(handler), lambda c: c.commit(FP))


def test_non_json_conflict_is_still_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _html(409)

    with pytest.raises(LedgerRejectedError):
        _run(_ledger(handler), lambda c: c.commit(FP))


def test_archive_non_json_body_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _html()

    with pytest.raises(ArchiveUnavailableError, match="non-JSON"):
        _run(_archive(handler), lambda c: c.put(b"{}", filename="x.json"))
