"""
Domain enums and value objects shared by the parsing pipeline and the ledger.

Monetary values are always integers in minor units (pesewas, cents, ...).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    MTN_GH = "MTN_GH"
    VODAFONE_GH = "VODAFONE_GH"
    AIRTELTIGO_GH = "AIRTELTIGO_GH"
    MTN_RW = "MTN_RW"
    AIRTEL_RW = "AIRTEL_RW"
    MPESA_TZ = "MPESA_TZ"
    TIGOPESA_TZ = "TIGOPESA_TZ"
    ORANGE_CD = "ORANGE_CD"
    LUMICASH_BI = "LUMICASH_BI"
    ECOCASH_BI = "ECOCASH_BI"
    MTN_ZM = "MTN_ZM"
    AIRTEL_ZM = "AIRTEL_ZM"
    ZAMTEL_ZM = "ZAMTEL_ZM"
    UNKNOWN = "UNKNOWN"


class TransactionCategory(str, Enum):
    RECEIVED = "RECEIVED"
    SENT = "SENT"
    CASH_OUT = "CASH_OUT"
    AIRTIME = "AIRTIME"
    DEPOSIT = "DEPOSIT"
    PAYMENT = "PAYMENT"
    UNKNOWN = "UNKNOWN"


class TokenTransactionType(str, Enum):
    SMS_CREDIT = "SMS_CREDIT"
    NFC_CREDIT = "NFC_CREDIT"
    PURCHASE = "PURCHASE"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class ReferenceType(str, Enum):
    SMS_TRANSACTION = "SMS_TRANSACTION"
    NFC_TAG = "NFC_TAG"
    ORDER = "ORDER"
    MANUAL = "MANUAL"


class WalletType(str, Enum):
    TOKEN = "TOKEN"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


class RawMessage(BaseModel):
    """An SMS as handed over by the device message-delivery layer."""
    sender: str
    body: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ParsedTransaction(BaseModel):
    """Typed facts extracted from one confirmation message."""
    provider: Provider = Provider.UNKNOWN
    category: TransactionCategory = TransactionCategory.UNKNOWN
    amount_minor_units: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)
    counterparty: Optional[str] = None
    reference: Optional[str] = None
    balance_after_minor_units: Optional[int] = None
    raw_message: str

    model_config = ConfigDict(frozen=True)
