"""
Turns confirmation text into a ParsedTransaction.

Provider detection picks a dialect table, then every field is pulled out by
its own ordered rule chain (provider rules first, shared rules after). The
first rule that yields a value wins. A message with no parseable amount is
rejected outright.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from momowallet.classifier import MoneyMessageClassifier
from momowallet.domain import ParsedTransaction, TransactionCategory
from momowallet.providers import (
    CATEGORY_PATTERNS,
    DEFAULT_MARKET,
    GENERIC_AMOUNT_RULES,
    GENERIC_BALANCE_RULES,
    GENERIC_REFERENCE_RULES,
    KNOWN_CURRENCIES,
    AmountRule,
    Dialect,
    dialects_for_market,
    generic_dialect,
    normalize_currency,
)

logger = logging.getLogger(__name__)

_MINOR_UNITS_PER_MAJOR = Decimal(100)
# Largest value a signed 64-bit INTEGER column holds
MAX_MINOR_UNITS = 2**63 - 1


@dataclass(frozen=True)
class AmountMatch:
    amount_minor_units: int
    currency: str
    counterparty: Optional[str]
    category: Optional[TransactionCategory]


def to_minor_units(text: str) -> Optional[int]:
    """
    Parse '1,234.56' / '1 500' into integer minor units (x100, half-up).

    None for text that is not a non-negative number or whose value does not
    fit a 64-bit storage column.
    """
    cleaned = re.sub(r"[,\s]", "", text or "")
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if value < 0:
        return None
    # Compare before quantize, which fails past the decimal context precision
    if value * _MINOR_UNITS_PER_MAJOR > MAX_MINOR_UNITS:
        logger.warning(f"Amount {cleaned[:32]} exceeds the storable range")
        return None
    return int((value * _MINOR_UNITS_PER_MAJOR).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def categorize(body: str) -> TransactionCategory:
    """Keyword chain: Received, Sent, CashOut, Airtime, Deposit; Unknown otherwise."""
    lowered = body.lower()
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(lowered):
            return category
    return TransactionCategory.UNKNOWN


def _clean_party(party: Optional[str]) -> Optional[str]:
    if not party:
        return None
    party = party.strip(" \t.,;:-")
    return party or None


def _amount_from_match(match: re.Match, rule: AmountRule, dialect: Dialect) -> Optional[AmountMatch]:
    groups = match.groupdict()
    token = groups.get("currency") or groups.get("currency_after")
    currency = normalize_currency(token, dialect.currency)
    if rule.strict_currency and currency not in KNOWN_CURRENCIES:
        return None
    minor = to_minor_units(groups["amount"])
    if minor is None:
        return None
    return AmountMatch(
        amount_minor_units=minor,
        currency=currency,
        counterparty=_clean_party(groups.get("party")),
        category=rule.category,
    )


def _first_ref(patterns: Iterable[re.Pattern], body: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(body)
        if match:
            return match.group("ref")
    return None


def _first_amount_value(patterns: Iterable[re.Pattern], body: str) -> Optional[int]:
    for pattern in patterns:
        match = pattern.search(body)
        if match:
            minor = to_minor_units(match.group("amount"))
            if minor is not None:
                return minor
    return None


class SmsExtractor:
    """
    Extracts transaction fields from a money message.

    Args:
        market: ISO country code whose dialects are preferred and whose
            currency is the default when a message carries none.
        classifier: gate applied before extraction; built for ``market``
            when omitted.
    """

    def __init__(self, market: str = DEFAULT_MARKET, classifier: Optional[MoneyMessageClassifier] = None):
        self.market = market.upper()
        self.classifier = classifier or MoneyMessageClassifier(self.market)
        self.dialects = dialects_for_market(self.market)
        self.fallback = generic_dialect(self.market)

    def detect_dialect(self, sender: str, body: str) -> Dialect:
        """First dialect whose keywords hit the sender, then the body; generic otherwise."""
        for dialect in self.dialects:
            if dialect.matches_sender(sender):
                return dialect
        for dialect in self.dialects:
            if dialect.matches_body(body):
                return dialect
        return self.fallback

    def extract_amount(self, dialect: Dialect, body: str) -> Optional[AmountMatch]:
        for rule in dialect.amount_rules + GENERIC_AMOUNT_RULES:
            for match in rule.pattern.finditer(body):
                found = _amount_from_match(match, rule, dialect)
                if found is not None:
                    return found
        return None

    def extract_reference(self, dialect: Dialect, body: str) -> Optional[str]:
        return _first_ref(dialect.reference_rules + GENERIC_REFERENCE_RULES, body)

    def extract_balance(self, dialect: Dialect, body: str) -> Optional[int]:
        return _first_amount_value(dialect.balance_rules + GENERIC_BALANCE_RULES, body)

    def extract(self, sender: str, body: str) -> Optional[ParsedTransaction]:
        """Classify then parse; None for non-money text or when no amount is found."""
        if not self.classifier.is_money_message(sender, body):
            return None
        return self.parse(sender, body)

    def parse(self, sender: str, body: str) -> Optional[ParsedTransaction]:
        """Field extraction for a message already accepted by the classifier."""
        dialect = self.detect_dialect(sender, body)
        logger.debug(f"Detected dialect {dialect.name} for sender {sender!r}")

        amount = self.extract_amount(dialect, body)
        if amount is None:
            logger.info(f"No amount found in message from {sender!r} ({dialect.name})")
            return None

        category = amount.category or categorize(body)

        return ParsedTransaction(
            provider=dialect.provider,
            category=category,
            amount_minor_units=amount.amount_minor_units,
            currency=amount.currency,
            counterparty=amount.counterparty,
            reference=self.extract_reference(dialect, body),
            balance_after_minor_units=self.extract_balance(dialect, body),
            raw_message=body,
        )
