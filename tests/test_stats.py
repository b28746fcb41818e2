"""
Tests for the GET /stats and GET /metrics endpoints.

Tests cover:
- Empty database returns zeros/nulls
- Credited vs pending counts
- Per-provider and per-category counts
- First and last stored timestamps
- Prometheus exposition
"""

from conftest import post_sms
from momowallet import service as service_module
from momowallet.ledger import ConcurrentUpdateError


class TestStatsEmpty:

    def test_empty_database(self, client):
        data = client.get("/stats").json()

        assert data == {
            "total_transactions": 0,
            "credited_transactions": 0,
            "uncredited_received": 0,
            "per_provider": [],
            "per_category": [],
            "first_transaction_at": None,
            "last_transaction_at": None,
        }


class TestStatsCounts:

    def test_counts(self, client):
        post_sms(client, "user-1", "MobileMoney", "You have received GHS 10.00 from Ama. Transaction ID: AAA1111111")
        post_sms(client, "user-1", "MobileMoney", "You have received GHS 20.00 from Kofi. Transaction ID: BBB2222222")
        post_sms(client, "user-1", "Vodafone", "Sent GHS 5.00 to Jane Doe. Ref: XY98765432")

        data = client.get("/stats").json()

        assert data["total_transactions"] == 3
        assert data["credited_transactions"] == 2
        assert data["uncredited_received"] == 0
        assert data["per_provider"] == [
            {"provider": "MTN_GH", "count": 2},
            {"provider": "VODAFONE_GH", "count": 1},
        ]
        assert data["per_category"] == [
            {"category": "RECEIVED", "count": 2},
            {"category": "SENT", "count": 1},
        ]
        assert data["first_transaction_at"] <= data["last_transaction_at"]

    def test_pending_counted(self, client, monkeypatch):
        def failing_apply(*args, **kwargs):
            raise ConcurrentUpdateError("busy")

        monkeypatch.setattr(service_module, "apply_transaction", failing_apply)
        post_sms(client, "user-1", "MobileMoney", "You have received GHS 10.00 from Ama. Transaction ID: AAA1111111")

        data = client.get("/stats").json()

        assert data["credited_transactions"] == 0
        assert data["uncredited_received"] == 1


class TestMetrics:

    def test_exposition(self, client):
        post_sms(client, "user-1", "MobileMoney", "You have received GHS 10.00 from Ama. Transaction ID: AAA1111111")

        response = client.get("/metrics")

        assert response.status_code == 200
        text = response.text
        assert 'sms_ingest_total{result="credited_wallet"}' in text
        assert 'wallet_entries_total{type="SMS_CREDIT"}' in text
        assert "http_requests_total" in text
        assert "request_latency_seconds" in text
