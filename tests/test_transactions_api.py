"""
Tests for the transaction and wallet read endpoints.

Tests cover:
- GET /transactions filters and pagination
- GET /transactions/{id}
- GET /wallets/{user_id}, /entries, /verify
- POST /wallets/{user_id}/recover
"""

from sqlalchemy.exc import OperationalError

from conftest import post_sms
from momowallet import service as service_module
from momowallet.ledger import ConcurrentUpdateError


def seed(client) -> None:
    post_sms(client, "user-1", "MobileMoney", "You have received GHS 10.00 from Ama. Transaction ID: AAA1111111")
    post_sms(client, "user-1", "MobileMoney", "You have received GHS 20.00 from Kofi. Transaction ID: BBB2222222")
    post_sms(client, "user-1", "Vodafone", "Sent GHS 5.00 to Jane Doe. Ref: XY98765432")
    post_sms(client, "user-2", "MobileMoney", "You have received GHS 7.00 from Yaw. Transaction ID: CCC3333333")


class TestListTransactions:

    def test_empty(self, client):
        assert client.get("/transactions").json() == {"data": [], "total": 0, "limit": 50, "offset": 0}

    def test_all_in_insert_order(self, client):
        seed(client)

        data = client.get("/transactions").json()

        assert data["total"] == 4
        assert [t["reference"] for t in data["data"]] == [
            "AAA1111111", "BBB2222222", "XY98765432", "CCC3333333"
        ]

    def test_filters(self, client):
        seed(client)

        assert client.get("/transactions", params={"user_id": "user-2"}).json()["total"] == 1
        assert client.get("/transactions", params={"credited": "false"}).json()["total"] == 1
        assert client.get("/transactions", params={"credited": "true"}).json()["total"] == 3
        assert client.get("/transactions", params={"provider": "vodafone_gh"}).json()["total"] == 1
        assert client.get("/transactions", params={"category": "received"}).json()["total"] == 3

        by_ref = client.get("/transactions", params={"reference": "BBB2222222"}).json()
        assert by_ref["total"] == 1
        assert by_ref["data"][0]["amount_minor_units"] == 2000

    def test_pagination(self, client):
        seed(client)

        page = client.get("/transactions", params={"limit": 2, "offset": 1}).json()

        assert page["total"] == 4
        assert [t["reference"] for t in page["data"]] == ["BBB2222222", "XY98765432"]

    def test_limit_bounds(self, client):
        assert client.get("/transactions", params={"limit": 0}).status_code == 422
        assert client.get("/transactions", params={"limit": 101}).status_code == 422


class TestGetTransaction:

    def test_found(self, client):
        result = post_sms(
            client, "user-1", "MobileMoney", "You have received GHS 10.00 from Ama. Transaction ID: AAA1111111"
        ).json()["result"]

        record = client.get(f"/transactions/{result['id']}").json()

        assert record["wallet_credited"] is True
        assert record["provider"] == "MTN_GH"
        assert record["counterparty"] == "Ama"
        assert record["received_at"] == "2025-01-15T10:00:00Z"

    def test_missing(self, client):
        assert client.get("/transactions/nope").status_code == 404


class TestWallets:

    def test_wallet_and_entries(self, client):
        seed(client)

        wallet = client.get("/wallets/user-1").json()
        entries = client.get("/wallets/user-1/entries").json()

        assert wallet["balance"] == 3000
        assert wallet["entry_count"] == 2
        assert entries["total"] == 2
        assert [e["sequence"] for e in entries["data"]] == [2, 1]
        assert entries["data"][0]["balance_after"] == 3000
        assert entries["data"][0]["metadata"]["provider"] == "MTN_GH"

    def test_verify(self, client):
        seed(client)

        assert client.get("/wallets/user-1/verify").json()["consistent"] is True

    def test_unknown_user(self, client):
        assert client.get("/wallets/ghost").status_code == 404
        assert client.get("/wallets/ghost/entries").status_code == 404

    def test_recover_endpoint(self, client, monkeypatch):
        def failing_apply(*args, **kwargs):
            raise ConcurrentUpdateError("busy")

        monkeypatch.setattr(service_module, "apply_transaction", failing_apply)
        result = post_sms(
            client, "user-1", "MobileMoney", "You have received GHS 10.00 from Ama. Transaction ID: AAA1111111"
        ).json()["result"]
        assert result["kind"] == "credit_failed"
        monkeypatch.undo()

        first = client.post("/wallets/user-1/recover").json()
        second = client.post("/wallets/user-1/recover").json()

        assert first == {"user_id": "user-1", "credited": 1}
        assert second == {"user_id": "user-1", "credited": 0}
        assert client.get("/wallets/user-1").json()["balance"] == 1000

    def test_recover_storage_failure(self, client, monkeypatch):
        def broken_read(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(service_module, "get_uncredited_received", broken_read)

        response = client.post("/wallets/user-1/recover")

        assert response.status_code == 503
        assert response.json()["detail"] == "pending records could not be read"
