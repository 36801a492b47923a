from __future__ import annotations

import asyncio

import httpx
from fastapi.testclient import TestClient

from certchain.container import Services, in_memory_services
from certchain.core.errors import ArchiveUnavailableError, LedgerUnavailableError
from certchain.main import app
from certchain.services.archive import InMemoryContentArchive
from certchain.services.ledger import InMemoryVerificationLedger
from tests.conftest import enrolled


class DownLedger(InMemoryVerificationLedger):
    async def commit(self, fingerprint: str) -> str:
        raise LedgerUnavailableError("ledger unreachable")


class BrokenArchive(InMemoryContentArchive):
    async def put(self, content: bytes, *, filename: str) -> str:
        raise ArchiveUnavailableError("archive down")


def _issue(client: TestClient, headers: dict[str, str], **body) -> httpx.Response:
    body = {"subject_id": "S-1", "course": "Blockchain 101", **body}
    return client.post("/v1/credentials/issue", json=body, headers=headers)


def test_issue_then_verify(
    client: TestClient, services: Services, admin_headers: dict[str, str]
) -> None:
    enrolled(services)

    resp = _issue(client, admin_headers)
    assert resp.status_code == 201
    data = resp.json()
    assert data["credential_id"].startswith("CERT-")
    assert data["content_link"].startswith("http")

    verdict = client.get(f"/v1/credentials/{data['credential_id']}/verify")
    assert verdict.status_code == 200
    body = verdict.json()
    assert body["valid"] is True
    assert body["reason"] == "valid"
    assert body["subject_name"] == "Ada Lovelace"
    assert body["content_link"] == data["content_link"]


def test_issue_twice_conflicts(
    client: TestClient, services: Services, admin_headers: dict[str, str]
) -> None:
    enrolled(services)
    assert _issue(client, admin_headers).status_code == 201

    resp = _issue(client, admin_headers)
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "already_certified"


def test_issue_unknown_subject_404(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    resp = _issue(client, admin_headers, subject_id="ghost")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "not_found"


def test_issue_blank_course_400(
    client: TestClient, services: Services, admin_headers: dict[str, str]
) -> None:
    enrolled(services)
    resp = _issue(client, admin_headers, course="  ")
    assert resp.status_code == 400


def test_issue_with_ledger_down_is_503_and_retryable(admin_headers: dict[str, str]) -> None:
    svc = in_memory_services(ledger=DownLedger())
    enrolled(svc)
    app.state.services = svc
    try:
        resp = _issue(TestClient(app), admin_headers)
    finally:
        app.state.services = None

    assert resp.status_code == 503
    assert resp.headers["retry-after"] == "5"
    assert resp.json()["detail"]["code"] == "ledger_unavailable"
    assert asyncio.run(svc.registry.list_pending()) == []


def test_issue_after_ledger_commit_failure_is_202(admin_headers: dict[str, str]) -> None:
    svc = in_memory_services(archive=BrokenArchive("http://gw/ipfs"))
    enrolled(svc)
    app.state.services = svc
    try:
        resp = _issue(TestClient(app), admin_headers)
    finally:
        app.state.services = None

    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "pending_reconciliation"
    assert body["operation"] == "issue"
    assert len(asyncio.run(svc.registry.list_pending())) == 1


def test_revoke_then_verify_reports_revoked(
    client: TestClient, services: Services, admin_headers: dict[str, str]
) -> None:
    enrolled(services)
    credential_id = _issue(client, admin_headers).json()["credential_id"]

    resp = client.post(f"/v1/credentials/{credential_id}/revoke", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "revoked"
    assert resp.json()["revoked_at"] > 0

    verdict = client.get(f"/v1/credentials/{credential_id}/verify").json()
    assert verdict["valid"] is False
    assert verdict["reason"] == "revoked"
    assert verdict["content_link"] is None

    again = client.post(f"/v1/credentials/{credential_id}/revoke", headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "already_revoked"


def test_revoke_unknown_404(client: TestClient, admin_headers: dict[str, str]) -> None:
    resp = client.post("/v1/credentials/CERT-NOPE/revoke", headers=admin_headers)
    assert resp.status_code == 404


def test_verify_unknown_404_is_public(client: TestClient) -> None:
    resp = client.get("/v1/credentials/CERT-NOPE/verify")
    assert resp.status_code == 404


def test_reconcile_reports_pending_count(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    resp = client.post("/v1/credentials/reconcile", headers=admin_headers)
    assert resp.status_code == 202
    assert resp.json() == {"status": "queued", "pending": 0}
