"""
API Tests for the escrow HTTP surface

Tests cover:
1. The organization / voucher lifecycle over HTTP
2. Mapping of ledger errors to status codes and error bodies
"""

import json
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from escrow.addressing import organization_address, voucher_address
from escrow.api import create_app
from escrow.config import Settings
from escrow.service import LedgerService

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
ORG = organization_address(12345)
V1 = voucher_address("v1")
ADMIN = "admin-wallet"
MAINTAINER = "maintainer-wallet"


@pytest.fixture
def service() -> LedgerService:
    return LedgerService(settings=Settings(), clock=lambda: NOW)


@pytest.fixture
def client(service) -> TestClient:
    return TestClient(create_app(service))


def bootstrap(client: TestClient) -> None:
    assert client.post("/organizations", json={
        "org_external_id": 12345, "organization": ORG, "admin": ADMIN,
    }).status_code == 201
    client.post(f"/wallets/{ADMIN}/fund", json={"amount": 1_000_000_000})
    client.post(f"/organizations/{ORG}/deposit", json={
        "amount": 1_000_000_000, "organization": ORG, "depositor": ADMIN,
    })
    client.post(f"/organizations/{ORG}/maintainers", json={
        "maintainer": MAINTAINER, "organization": ORG, "admin": ADMIN,
    })


def create_v1(client: TestClient, maintainer: str = MAINTAINER):
    return client.post("/vouchers", json={
        "voucher_id": "v1",
        "recipient_external_id": 67890,
        "amount": 100_000_000,
        "metadata": '{"repo":"owner/repo","pr":123}',
        "organization": ORG,
        "voucher": V1,
        "maintainer": maintainer,
    })


class TestLifecycle:
    """Tests for the happy path over HTTP."""

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_derivation_endpoints(self, client):
        assert client.get("/addresses/organization/12345").json() == {"address": ORG}
        assert client.get("/addresses/voucher/v1").json() == {"address": V1}

    def test_create_and_redeem(self, client, service):
        bootstrap(client)

        created = create_v1(client)
        assert created.status_code == 201
        assert created.json()["organization"]["balance"] == 900_000_000
        assert created.json()["voucher"]["status"] == "OPEN"

        issued_at = int(NOW.timestamp())
        signature = service.verifier.sign(voucher=V1, recipient="dev-wallet", github_id=67890, issued_at=issued_at)
        redeemed = client.post(f"/vouchers/{V1}/redeem", json={
            "proof": {"github_id": 67890, "issued_at": issued_at, "signature": signature},
            "voucher": V1,
            "recipient": "dev-wallet",
        })

        assert redeemed.status_code == 200
        assert redeemed.json()["voucher"]["status"] == "REDEEMED"
        assert client.get("/wallets/dev-wallet").json()["balance"] == 100_000_000

    def test_cancel_and_summary(self, client):
        bootstrap(client)
        create_v1(client)

        cancelled = client.post(f"/vouchers/{V1}/cancel", json={
            "organization": ORG, "voucher": V1, "maintainer": MAINTAINER,
        })
        summary = client.get(f"/organizations/{ORG}/summary").json()

        assert cancelled.json()["organization"]["balance"] == 1_000_000_000
        assert summary["open_escrow"] == 0
        assert summary["conserved"] is True
        assert client.get(f"/organizations/{ORG}/vouchers", params={"status": "CANCELLED"}).json()[0]["address"] == V1

    def test_remove_maintainer(self, client):
        bootstrap(client)

        response = client.delete(f"/organizations/{ORG}/maintainers/{MAINTAINER}", params={"admin": ADMIN})

        assert response.status_code == 200
        assert response.json()["organization"]["maintainers"] == []


class TestErrorMapping:
    """Tests that every failure names the check that failed."""

    def test_duplicate_voucher_conflict(self, client):
        bootstrap(client)
        create_v1(client)

        response = create_v1(client)

        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateVoucher"
        assert client.get(f"/organizations/{ORG}").json()["balance"] == 900_000_000

    def test_already_initialized_conflict(self, client):
        bootstrap(client)

        response = client.post("/organizations", json={
            "org_external_id": 12345, "organization": ORG, "admin": ADMIN,
        })

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyInitialized"

    def test_unauthorized_forbidden(self, client):
        bootstrap(client)

        response = create_v1(client, maintainer="stranger")

        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_missing_account_not_found(self, client):
        response = client.get(f"/vouchers/{V1}")

        assert response.status_code == 404
        assert response.json()["error"] == "AccountNotFound"

    def test_invalid_amount_bad_request(self, client):
        bootstrap(client)

        response = client.post(f"/organizations/{ORG}/deposit", json={
            "amount": 0, "organization": ORG, "depositor": ADMIN,
        })

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidAmount"

    def test_path_and_body_must_agree(self, client):
        bootstrap(client)

        response = client.post(f"/organizations/{organization_address(1)}/deposit", json={
            "amount": 1, "organization": ORG, "depositor": ADMIN,
        })

        assert response.status_code == 400
        assert response.json()["error"] == "AddressMismatch"

    def test_lone_surrogate_voucher_id_bad_request(self, client):
        """Test an escaped lone surrogate in the body is a named failure, not a crash."""
        bootstrap(client)
        body = json.dumps({
            "voucher_id": "pr-\ud800",
            "recipient_external_id": 67890,
            "amount": 1,
            "organization": ORG,
            "voucher": V1,
            "maintainer": MAINTAINER,
        })

        response = client.post("/vouchers", content=body.encode("ascii"),
                               headers={"content-type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidVoucherId"
        assert client.get(f"/organizations/{ORG}").json()["balance"] == 1_000_000_000

    def test_lone_surrogate_metadata_bad_request(self, client):
        bootstrap(client)
        body = json.dumps({
            "voucher_id": "v1",
            "recipient_external_id": 67890,
            "amount": 1,
            "metadata": "\udc00",
            "organization": ORG,
            "voucher": V1,
            "maintainer": MAINTAINER,
        })

        response = client.post("/vouchers", content=body.encode("ascii"),
                               headers={"content-type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidMetadata"

    @pytest.mark.parametrize("params", [{"limit": -1}, {"limit": 0}, {"offset": -1}])
    def test_history_rejects_negative_paging(self, client, params):
        bootstrap(client)

        response = client.get(f"/organizations/{ORG}/history", params=params)

        assert response.status_code == 422

    def test_history_paging(self, client):
        bootstrap(client)

        response = client.get(f"/organizations/{ORG}/history", params={"limit": 1, "offset": 1})

        assert response.status_code == 200
        assert [e["event_type"] for e in response.json()["events"]] == ["DEPOSIT"]
