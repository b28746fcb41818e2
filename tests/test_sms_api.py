"""
Tests for the POST /sms endpoint.

Tests cover:
- Valid signature: message credited, wallet visible
- Redelivery handling (idempotency)
- Invalid/missing signature (401)
- Validation errors (422)
- Storage failure surfaced as 503
"""

import json

import pytest
from sqlalchemy.exc import OperationalError

from conftest import compute_signature, post_sms
from momowallet import service as service_module


RECEIVED = "You have received GHS 50.00 from John Mensah. Transaction ID: 1234567890."


class TestSmsValidSignature:
    """Test ingestion with valid signatures."""

    def test_received_sms_credits_wallet(self, client):
        response = post_sms(client, "user-1", "MobileMoney", RECEIVED)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["result"]["kind"] == "credited_wallet"
        assert data["result"]["amount_delta"] == 5000
        assert data["result"]["new_balance"] == 5000
        assert "X-Request-ID" in response.headers

        wallet = client.get("/wallets/user-1").json()
        assert wallet["balance"] == 5000
        assert wallet["currency"] == "GHS"

    def test_redelivery_is_duplicate(self, client):
        post_sms(client, "user-1", "MobileMoney", RECEIVED)
        response = post_sms(client, "user-1", "MobileMoney", RECEIVED)

        assert response.status_code == 200
        assert response.json()["result"] == {"kind": "duplicate", "reference": "1234567890"}
        assert client.get("/wallets/user-1").json()["balance"] == 5000

    def test_not_money_message(self, client):
        response = post_sms(client, "user-1", "PROMO", "Buy data bundles today!")

        assert response.status_code == 200
        assert response.json()["result"] == {"kind": "not_money_message"}

    def test_sent_message_saved(self, client):
        response = post_sms(
            client, "user-1", "Vodafone", "Sent GHS 50.00 to Jane Doe. Ref: XY98765432"
        )

        assert response.status_code == 200
        assert response.json()["result"]["kind"] == "saved"
        assert client.get("/wallets/user-1").status_code == 404


class TestSmsInvalidSignature:
    """Requests without a valid X-Signature are rejected before parsing."""

    def test_missing_signature(self, client):
        response = client.post(
            "/sms",
            content=json.dumps({"user_id": "u", "sender": "MobileMoney", "body": RECEIVED}),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "invalid signature"}

    def test_wrong_signature(self, client):
        body = json.dumps({"user_id": "u", "sender": "MobileMoney", "body": RECEIVED})
        response = client.post(
            "/sms",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": compute_signature(body, "wrong")},
        )

        assert response.status_code == 401

    def test_nothing_stored_on_bad_signature(self, client):
        client.post("/sms", content="{}", headers={"X-Signature": "00"})

        assert client.get("/transactions").json()["total"] == 0


class TestSmsValidation:

    @pytest.mark.parametrize("payload", [
        {"sender": "MobileMoney", "body": RECEIVED},
        {"user_id": "u", "sender": "", "body": RECEIVED},
        {"user_id": "u", "sender": "MobileMoney", "body": ""},
        {"user_id": "   ", "sender": "MobileMoney", "body": RECEIVED},
        {"user_id": "u", "sender": "MobileMoney", "body": RECEIVED, "received_at": "yesterday"},
    ])
    def test_invalid_body(self, client, payload):
        body = json.dumps(payload)
        response = client.post(
            "/sms",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": compute_signature(body)},
        )

        assert response.status_code == 422

    def test_invalid_json(self, client):
        body = "{not json"
        response = client.post(
            "/sms",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": compute_signature(body)},
        )

        assert response.status_code == 422


class TestSmsStorageUnavailable:

    def test_storage_failure_returns_503(self, client, monkeypatch):
        def broken_lookup(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(service_module, "check_duplicate", broken_lookup)

        response = post_sms(client, "user-1", "MobileMoney", RECEIVED)

        assert response.status_code == 503
        assert response.json()["result"]["kind"] == "storage_unavailable"


class TestHealth:

    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "ok", "reason": None}

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"
