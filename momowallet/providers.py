"""
Provider dialect tables.

Each dialect is plain data: who sends it, which words identify it, and the
ordered regular-expression rules used to pull each field out of its messages.
Rules are evaluated in declared order and the first match wins. Adding a new
market means adding a table here; the extractor does not change.

Named groups used by the rules:
- ``amount``   the money figure (required in amount and balance rules)
- ``currency`` the currency token (optional, market currency when absent)
- ``party``    counterparty name/number (optional)
- ``ref``      the provider transaction id (reference rules)
"""

import re
from dataclasses import dataclass
from typing import Optional

from momowallet.domain import Provider, TransactionCategory


# =============================================================================
# Shared pattern fragments
# =============================================================================

# 1,234.56 | 1 500 | 50.00 | 50
AMOUNT = r"(?P<amount>\d{1,3}(?:[, ]\d{3})+(?:\.\d+)?(?![\d,])|\d+(?:\.\d+)?)"

_PARTY_STOP_WORDS = (
    "on", "at", "via", "was", "with", "for", "Trans(?:action)?", "Ref(?:erence)?",
    "ID", "Txn", "TxId", "Your", "New", "Bal(?:ance)?", "Fee", "Current", "Available",
    "Amount", "Message", "Salio", "Kumbukumbu", "tarehe", "le", "Nouveau", "Solde",
)

PARTY = (
    r"(?P<party>.+?)(?=\.\s|\.$|,|;|\s\(|\r?\n|\s+(?:"
    + "|".join(_PARTY_STOP_WORDS)
    + r")\b|$)"
)

# Any currency-looking token, validated by the extractor against KNOWN_CURRENCIES
GENERIC_CURRENCY = r"(?P<currency>GH[₵¢]|[A-Za-z]{1,4})"

CURRENCY_ALIASES = {
    "GH": "GHS",
    "GHC": "GHS",
    "GH₵": "GHS",
    "GH¢": "GHS",
    "FRW": "RWF",
    "TSH": "TZS",
    "FC": "CDF",
    "FBU": "BIF",
    "ZK": "ZMW",
    "K": "ZMW",
    "KSH": "KES",
    "USH": "UGX",
}

KNOWN_CURRENCIES = frozenset({
    "GHS", "RWF", "TZS", "CDF", "BIF", "ZMW", "KES", "UGX", "NGN", "XOF", "XAF",
    "ZAR", "MWK", "ETB", "USD", "EUR", "GBP",
})

MARKET_CURRENCIES = {
    "GH": "GHS",
    "RW": "RWF",
    "TZ": "TZS",
    "CD": "CDF",
    "BI": "BIF",
    "ZM": "ZMW",
}

DEFAULT_MARKET = "GH"


def normalize_currency(token: Optional[str], default: str) -> str:
    """Map a raw currency token to its 3-letter code, falling back to ``default``."""
    if not token:
        return default
    upper = token.strip().upper()
    return CURRENCY_ALIASES.get(upper, upper)


# =============================================================================
# Rule types
# =============================================================================

@dataclass(frozen=True)
class AmountRule:
    """Pattern yielding amount (+ optional currency/party); category when it implies one."""
    pattern: re.Pattern
    category: Optional[TransactionCategory] = None
    strict_currency: bool = False


@dataclass(frozen=True)
class Dialect:
    provider: Provider
    name: str
    market: str
    currency: str
    sender_ids: tuple = ()
    keywords: tuple = ()
    amount_rules: tuple = ()
    reference_rules: tuple = ()
    balance_rules: tuple = ()

    def matches_sender(self, sender: str) -> bool:
        lowered = sender.lower()
        return any(k.lower() in lowered for k in self.keywords + self.sender_ids)

    def matches_body(self, body: str) -> bool:
        lowered = body.lower()
        return any(k.lower() in lowered for k in self.keywords)


def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


def _money(cur: str) -> str:
    """Amount with the market currency token before or after it (or absent)."""
    return (
        rf"(?:(?P<currency>{cur})\.?\s?)?{AMOUNT}"
        rf"(?:\s?(?P<currency_after>{cur})(?![A-Za-z]))?"
    )


def _received(verbs: str, cur: str, link: str = "from") -> AmountRule:
    return AmountRule(
        _compile(rf"\b(?:{verbs})\s+{_money(cur)}\s+(?:{link})\s+{PARTY}"),
        TransactionCategory.RECEIVED,
    )


def _outgoing(verbs: str, cur: str, category: TransactionCategory, link: str = "to") -> AmountRule:
    return AmountRule(
        _compile(rf"\b(?:{verbs})\s+{_money(cur)}\s+(?:{link})\s+{PARTY}"),
        category,
    )


# =============================================================================
# Field rule chains shared by every dialect (appended after provider rules)
# =============================================================================

_LINK_PARTY = rf"(?:\s+(?:has\s+been\s+)?(?:received\s+|sent\s+|transferred\s+)?(?:from|to)\s+{PARTY})?"

GENERIC_AMOUNT_RULES = (
    # CURRENCY AMOUNT
    AmountRule(_compile(rf"(?<![A-Za-z]){GENERIC_CURRENCY}\.?\s?{AMOUNT}\b{_LINK_PARTY}"), strict_currency=True),
    # AMOUNT CURRENCY
    AmountRule(_compile(rf"\b{AMOUNT}\s?{GENERIC_CURRENCY}\b{_LINK_PARTY}"), strict_currency=True),
)

_REF_LABEL = (
    r"(?:trans(?:action)?\s*id|txn\s*id|txid|ref(?:erence)?(?:\s*no\.?)?|txn|id)"
)

# Currency codes and aliases that can be glued to an amount ("GHS1000.00")
_GLUED_CURRENCY = "|".join(
    sorted(
        (code for code in KNOWN_CURRENCIES | set(CURRENCY_ALIASES) if code.isascii() and code.isalpha()),
        key=len,
        reverse=True,
    )
)

GENERIC_REFERENCE_RULES = (
    # 1. explicitly labelled alphanumeric token (must carry a digit)
    _compile(rf"\b{_REF_LABEL}\b[\s.:#-]*(?:is\s+)?(?P<ref>(?=[A-Za-z]*\d)[A-Za-z0-9]{{6,20}})\b"),
    # 2. provider-shaped token: 2-4 capitals then 6-12 digits, never a currency-prefixed amount
    re.compile(rf"\b(?!(?:{_GLUED_CURRENCY})\d)(?P<ref>[A-Z]{{2,4}}\d{{6,12}})\b(?!\.\d)"),
    # 3. long digit run, only directly after an id/ref label
    _compile(r"\b(?:ref(?:erence)?(?:\s*no\.?)?|id)\b[\s.:#-]*(?P<ref>\d{8,24})\b"),
)

_BAL_CUR = r"(?:GH[S₵¢C]?|[A-Za-z]{1,4})"

GENERIC_BALANCE_RULES = (
    _compile(rf"balance\s+is\s*[:.]?\s*(?:{_BAL_CUR}\.?\s?)?{AMOUNT}"),
    _compile(rf"\bbal(?:ance)?\s*:\s*(?:{_BAL_CUR}\.?\s?)?{AMOUNT}"),
    _compile(rf"new\s+balance\s*[:.]?\s*(?:{_BAL_CUR}\.?\s?)?{AMOUNT}"),
    _compile(rf"available(?:\s+balance)?\s*(?:is)?\s*[:.]?\s*(?:{_BAL_CUR}\.?\s?)?{AMOUNT}"),
)

# Keyword groups for category, in priority order (first group with a hit wins)
CATEGORY_KEYWORDS = (
    (TransactionCategory.RECEIVED, ("received", "credited", "incoming", "umepokea", "recu", "reçu")),
    (TransactionCategory.SENT, ("sent", "transferred", "transfer of", "paid to", "payment to", "debited", "umetuma", "envoye", "envoyé")),
    (TransactionCategory.CASH_OUT, ("cash out", "cashout", "withdrawn", "withdrawal", "atm", "retrait")),
    (TransactionCategory.AIRTIME, ("airtime", "recharge", "top-up", "topup", "bundle")),
    (TransactionCategory.DEPOSIT, ("deposit", "cash in", "cashin", "depot", "dépôt")),
)

CATEGORY_PATTERNS = tuple(
    (category, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in words) + r")\b"))
    for category, words in CATEGORY_KEYWORDS
)


# =============================================================================
# Dialect tables
# =============================================================================

_GH = r"GH(?:S|C|₵|¢)?"
_RW = r"RWF|FRW"
_TZ = r"TZS|TSh"
_CD = r"USD|CDF|FC"
_BI = r"BIF|FBu"
_ZM = r"ZMW|ZK|K"


DIALECTS = (
    # ------------------------------------------------------------------ Ghana
    Dialect(
        provider=Provider.MTN_GH,
        name="MTN MoMo Ghana",
        market="GH",
        currency="GHS",
        sender_ids=("MobileMoney", "MTN MoMo", "MTN", "MOMO"),
        keywords=("MTN", "MoMo"),
        amount_rules=(
            _received("You have received|Received|Payment received for|Cash In received for", _GH),
            _outgoing("Payment of|Payment made for|Paid", _GH, TransactionCategory.PAYMENT),
            _outgoing("Cash Out made for", _GH, TransactionCategory.CASH_OUT),
            _outgoing("You have sent|Sent|Transfer of", _GH, TransactionCategory.SENT),
        ),
        reference_rules=(
            _compile(r"Financial\s+Transaction\s+Id\s*:\s*(?P<ref>\d{6,20})"),
        ),
    ),
    Dialect(
        provider=Provider.VODAFONE_GH,
        name="Vodafone Cash Ghana",
        market="GH",
        currency="GHS",
        sender_ids=("Vodafone", "VodaCash", "VCash", "Telecel", "T-CASH"),
        keywords=("Vodafone", "VCash", "VodaCash", "Telecel"),
        amount_rules=(
            _received("You have received|Received", _GH),
            _outgoing("Payment of|Paid", _GH, TransactionCategory.PAYMENT),
            _outgoing("You have sent|Sent|Transferred", _GH, TransactionCategory.SENT),
        ),
    ),
    Dialect(
        provider=Provider.AIRTELTIGO_GH,
        name="AirtelTigo Money Ghana",
        market="GH",
        currency="GHS",
        sender_ids=("AirtelTigo", "AT Money", "ATMoney", "Tigo"),
        keywords=("AirtelTigo", "AT Money", "Tigo Cash"),
        amount_rules=(
            _received("You have received|Credited|Received", _GH),
            _outgoing("You have sent|Debited|Sent", _GH, TransactionCategory.SENT),
        ),
    ),
    # ----------------------------------------------------------------- Rwanda
    Dialect(
        provider=Provider.MTN_RW,
        name="MTN MoMo Rwanda",
        market="RW",
        currency="RWF",
        sender_ids=("M-Money", "MTN Rwanda", "MTN", "MoMo"),
        keywords=("MTN Rwanda", "M-Money", "MoMo"),
        amount_rules=(
            _received("You have received", _RW),
            _outgoing("Your payment of", _RW, TransactionCategory.PAYMENT),
            AmountRule(
                _compile(rf"{AMOUNT}\s?(?P<currency>{_RW})\s+transferred\s+to\s+{PARTY}"),
                TransactionCategory.SENT,
            ),
            _outgoing("You have transferred", _RW, TransactionCategory.SENT),
        ),
        reference_rules=(
            _compile(r"(?:Financial\s+Transaction\s+Id|TxId)\s*:\s*(?P<ref>\d{6,20})"),
        ),
    ),
    Dialect(
        provider=Provider.AIRTEL_RW,
        name="Airtel Money Rwanda",
        market="RW",
        currency="RWF",
        sender_ids=("Airtel Rwanda", "AirtelMoney", "Airtel Money"),
        keywords=("Airtel Money", "Airtel Rwanda"),
        amount_rules=(
            _received("You have received|Received", _RW),
            _outgoing("You have sent|Sent", _RW, TransactionCategory.SENT),
        ),
    ),
    # --------------------------------------------------------------- Tanzania
    Dialect(
        provider=Provider.MPESA_TZ,
        name="Vodacom M-Pesa Tanzania",
        market="TZ",
        currency="TZS",
        sender_ids=("M-PESA", "MPESA", "M-Pesa"),
        keywords=("M-PESA", "MPESA"),
        amount_rules=(
            _received("You have received|received", _TZ),
            AmountRule(
                _compile(rf"(?P<currency>{_TZ})\s?{AMOUNT}\s+sent\s+to\s+{PARTY}"),
                TransactionCategory.SENT,
            ),
            AmountRule(
                _compile(rf"(?P<currency>{_TZ})\s?{AMOUNT}\s+paid\s+to\s+{PARTY}"),
                TransactionCategory.PAYMENT,
            ),
            AmountRule(
                _compile(rf"Withdraw\s+(?P<currency>{_TZ})\s?{AMOUNT}\s+from\s+{PARTY}"),
                TransactionCategory.CASH_OUT,
            ),
        ),
        reference_rules=(
            _compile(r"\A\s*(?P<ref>[A-Z0-9]{10})\s+Confirmed"),
        ),
    ),
    Dialect(
        provider=Provider.TIGOPESA_TZ,
        name="Tigo Pesa Tanzania",
        market="TZ",
        currency="TZS",
        sender_ids=("TigoPesa", "Tigo Pesa", "Mixx by Yas"),
        keywords=("Tigo Pesa", "TigoPesa"),
        amount_rules=(
            _received("Umepokea|You have received", _TZ, link="kutoka kwa|from"),
            _outgoing("Umetuma|You have sent", _TZ, TransactionCategory.SENT, link="kwa|to"),
        ),
        reference_rules=(
            _compile(r"(?:Kumbukumbu|Muamala)\s*(?:no\.?|Na\.?)?\s*[:.]?\s*(?P<ref>[A-Z0-9.]{6,24}[A-Z0-9])"),
        ),
        balance_rules=(
            _compile(rf"Salio(?:\s+jipya)?\s*(?:ni|:)\s*(?:(?:TZS|TSh)\s?)?{AMOUNT}"),
        ),
    ),
    # ------------------------------------------------------------------- DRC
    Dialect(
        provider=Provider.ORANGE_CD,
        name="Orange Money RDC",
        market="CD",
        currency="CDF",
        sender_ids=("Orange Money", "OrangeMoney", "Orange"),
        keywords=("Orange Money", "OrangeMoney"),
        amount_rules=(
            _received("Vous avez re[çc]u", _CD, link="de"),
            _outgoing("Vous avez envoy[ée]", _CD, TransactionCategory.SENT, link="[àa]"),
            AmountRule(
                _compile(rf"Retrait\s+de\s+{AMOUNT}\s?(?P<currency>{_CD})"),
                TransactionCategory.CASH_OUT,
            ),
        ),
        reference_rules=(
            _compile(r"(?:Ref|Trans\s*ID)\s*:\s*(?P<ref>[A-Z]{2}\d{6}\.\d{4}\.[A-Z0-9]{6})"),
        ),
        balance_rules=(
            _compile(rf"(?:Nouveau\s+)?solde(?:\s+disponible)?\s*[:.]?\s*(?:(?:USD|CDF|FC)\s?)?{AMOUNT}"),
        ),
    ),
    # --------------------------------------------------------------- Burundi
    Dialect(
        provider=Provider.LUMICASH_BI,
        name="Lumicash Burundi",
        market="BI",
        currency="BIF",
        sender_ids=("Lumicash",),
        keywords=("Lumicash",),
        amount_rules=(
            _received("Vous avez re[çc]u|You have received", _BI, link="de|from"),
            _outgoing("Vous avez envoy[ée]|You have sent", _BI, TransactionCategory.SENT, link="[àa]|to"),
        ),
        balance_rules=(
            _compile(rf"(?:Nouveau\s+)?solde\s*[:.]?\s*(?:(?:BIF|FBu)\s?)?{AMOUNT}"),
        ),
    ),
    Dialect(
        provider=Provider.ECOCASH_BI,
        name="EcoCash Burundi",
        market="BI",
        currency="BIF",
        sender_ids=("EcoCash",),
        keywords=("EcoCash",),
        amount_rules=(
            _received("You have received|Received", _BI),
            _outgoing("You have sent|Sent|Transfer of", _BI, TransactionCategory.SENT),
        ),
    ),
    # ---------------------------------------------------------------- Zambia
    Dialect(
        provider=Provider.MTN_ZM,
        name="MTN MoMo Zambia",
        market="ZM",
        currency="ZMW",
        sender_ids=("MTN MoMo", "MTN", "MoMo"),
        keywords=("MTN", "MoMo"),
        amount_rules=(
            _received("You have received|Received", _ZM),
            _outgoing("You have sent|Sent", _ZM, TransactionCategory.SENT),
            _outgoing("Payment of", _ZM, TransactionCategory.PAYMENT),
        ),
    ),
    Dialect(
        provider=Provider.AIRTEL_ZM,
        name="Airtel Money Zambia",
        market="ZM",
        currency="ZMW",
        sender_ids=("Airtel Money", "AirtelMoney", "Airtel"),
        keywords=("Airtel Money", "Airtel"),
        amount_rules=(
            AmountRule(
                _compile(rf"Money\s+received\s+from\s+{PARTY}\.?\s+Amount\s*:?\s*(?P<currency>{_ZM})\s?{AMOUNT}"),
                TransactionCategory.RECEIVED,
            ),
            _received("You have received", _ZM),
            _outgoing("You have sent|Money sent", _ZM, TransactionCategory.SENT),
        ),
    ),
    Dialect(
        provider=Provider.ZAMTEL_ZM,
        name="Zamtel Kwacha",
        market="ZM",
        currency="ZMW",
        sender_ids=("Zamtel Kwacha", "Zamtel"),
        keywords=("Zamtel",),
        amount_rules=(
            _received("You have received|Received", _ZM),
            _outgoing("You have sent|Sent", _ZM, TransactionCategory.SENT),
        ),
    ),
)


def market_currency(market: str) -> str:
    return MARKET_CURRENCIES.get(market.upper(), MARKET_CURRENCIES[DEFAULT_MARKET])


def generic_dialect(market: str) -> Dialect:
    """Fallback table used when no provider is recognised."""
    return Dialect(
        provider=Provider.UNKNOWN,
        name="Generic",
        market=market.upper(),
        currency=market_currency(market),
    )


def dialects_for_market(market: str) -> list[Dialect]:
    """All dialects, the given market's first (declaration order kept within each group)."""
    market = market.upper()
    local = [d for d in DIALECTS if d.market == market]
    foreign = [d for d in DIALECTS if d.market != market]
    return local + foreign


def sender_allowlist(market: str) -> tuple:
    """Known provider sender ids for one market."""
    market = market.upper()
    seen: dict[str, None] = {}
    for dialect in DIALECTS:
        if dialect.market == market:
            for sender_id in dialect.sender_ids:
                seen.setdefault(sender_id, None)
    return tuple(seen)
