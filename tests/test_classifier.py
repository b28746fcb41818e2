"""
Tests for MoneyMessageClassifier.

Tests cover:
- Known provider senders accepted outright (exact, case-insensitive, prefix)
- Unlisted senders need both a currency amount and a payment keyword
- Per-market allowlists
"""

import pytest

from momowallet.classifier import MoneyMessageClassifier


@pytest.fixture
def classifier() -> MoneyMessageClassifier:
    return MoneyMessageClassifier("GH")


class TestKnownSenders:
    """Allowlisted sender ids are trusted without looking at the body."""

    @pytest.mark.parametrize("sender", ["MobileMoney", "mobilemoney", "MTN MoMo", "Vodafone", "AirtelTigo"])
    def test_allowlisted_sender_accepted(self, classifier, sender):
        assert classifier.is_money_message(sender, "anything at all")

    def test_prefix_match(self, classifier):
        assert classifier.is_known_sender("MTN-GH")

    def test_blank_sender_is_unknown(self, classifier):
        assert not classifier.is_known_sender("   ")

    def test_allowlist_is_per_market(self):
        ghana = MoneyMessageClassifier("GH")
        tanzania = MoneyMessageClassifier("TZ")
        assert not ghana.is_known_sender("M-PESA")
        assert tanzania.is_known_sender("M-PESA")

    def test_extra_senders(self):
        classifier = MoneyMessageClassifier("GH", extra_senders=["MyBank"])
        assert classifier.is_known_sender("MYBANK")


class TestContentHeuristic:
    """Unlisted senders fall back to amount + keyword."""

    def test_amount_and_keyword_accepted(self, classifier):
        assert classifier.is_money_message("+233201234567", "You have received GHS 20.00 from Ama")

    def test_amount_after_currency_position(self, classifier):
        assert classifier.is_money_message("+233201234567", "20.00 GHS credited to your account")

    def test_amount_without_keyword_rejected(self, classifier):
        assert not classifier.is_money_message("SHOPS", "GHS 20.00 off today only!")

    def test_keyword_without_amount_rejected(self, classifier):
        assert not classifier.is_money_message("BANK", "Deposit your savings with us now")

    def test_promotional_text_rejected(self, classifier):
        assert not classifier.is_money_message("PROMO", "Buy data bundles today!")

    def test_otp_rejected(self, classifier):
        assert not classifier.is_money_message("Google", "G-123456 is your verification code")
