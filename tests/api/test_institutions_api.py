from __future__ import annotations

from fastapi.testclient import TestClient

from certchain.container import Services

WALLET = "0x" + "ab" * 20


def test_add_list_and_grant_minter(
    client: TestClient, services: Services, admin_headers: dict[str, str]
) -> None:
    resp = client.post(
        "/v1/institutions",
        json={"name": "Open University", "identity": WALLET.upper().replace("0X", "0x")},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    assert resp.json() == {"name": "Open University", "identity": WALLET, "is_minter": False}

    resp = client.post(f"/v1/institutions/{WALLET}/minter", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["is_minter"] is True
    assert WALLET in services.ledger._minters

    listed = client.get("/v1/institutions", headers=admin_headers).json()
    assert listed == [{"name": "Open University", "identity": WALLET, "is_minter": True}]


def test_add_invalid_identity_400(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    resp = client.post(
        "/v1/institutions",
        json={"name": "Open University", "identity": "not-a-wallet"},
        headers=admin_headers,
    )
    assert resp.status_code == 400


def test_grant_minter_unknown_404(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    resp = client.post(f"/v1/institutions/{WALLET}/minter", headers=admin_headers)
    assert resp.status_code == 404
