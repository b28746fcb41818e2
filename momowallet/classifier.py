"""
Decides whether an SMS is a mobile-money confirmation.

Known provider sender ids are trusted outright. Anything else must carry both
a currency amount and a payment keyword to be accepted.
"""

import logging
import re
from typing import Iterable, Optional

from momowallet.providers import DEFAULT_MARKET, sender_allowlist

logger = logging.getLogger(__name__)


# CUR nnn.nn | nnn.nn CUR
CURRENCY_AMOUNT_PATTERN = re.compile(
    r"(?<![A-Za-z])(?:[A-Z][A-Za-z]{1,3}|GH[₵¢])\.?\s?\d[\d,]*(?:\.\d+)?"
    r"|\b\d[\d,]*(?:\.\d+)?\s?[A-Z][A-Za-z]{1,3}\b"
)

MONEY_KEYWORDS = (
    "received",
    "credited",
    "deposit",
    "momo",
    "mobile money",
    "m-pesa",
    "mpesa",
    "cash in",
    "umepokea",
    "vous avez recu",
    "vous avez reçu",
)


class MoneyMessageClassifier:
    """Sender allowlist first, keyword + amount heuristic as fallback."""

    def __init__(self, market: str = DEFAULT_MARKET, extra_senders: Optional[Iterable[str]] = None):
        self.market = market.upper()
        senders = list(sender_allowlist(self.market))
        if extra_senders:
            senders.extend(extra_senders)
        self.allowed_senders = tuple(s.lower() for s in senders)

    def is_known_sender(self, sender: str) -> bool:
        lowered = sender.strip().lower()
        if not lowered:
            return False
        return any(lowered == s or lowered.startswith(s) for s in self.allowed_senders)

    def has_money_signals(self, body: str) -> bool:
        if not CURRENCY_AMOUNT_PATTERN.search(body):
            return False
        lowered = body.lower()
        return any(keyword in lowered for keyword in MONEY_KEYWORDS)

    def is_money_message(self, sender: str, body: str) -> bool:
        if self.is_known_sender(sender):
            return True
        accepted = self.has_money_signals(body)
        if accepted:
            logger.debug(f"Accepted message from unlisted sender {sender!r} on content heuristic")
        return accepted
