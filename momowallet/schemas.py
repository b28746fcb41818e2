"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- The per-message ProcessResult union returned by the ingestion pipeline
- Response models for API responses
"""

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SmsIngestRequest(BaseModel):
    """
    Pydantic model for validating an SMS handed over by a device.

    Validates:
    - user_id: non-empty owner of the wallet to credit
    - sender: non-empty provider sender id or number
    - body: non-empty, max 2048 characters
    - received_at: ISO-8601 timestamp, naive values are taken as UTC
    """
    user_id: str = Field(..., min_length=1, max_length=128, description="Wallet owner")
    sender: str = Field(..., min_length=1, max_length=64, description="SMS sender id")
    body: str = Field(..., min_length=1, max_length=2048, description="Raw SMS text")
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Device receive time (ISO-8601)"
    )

    @field_validator("user_id", "sender")
    @classmethod
    def strip_non_blank(cls, v: str, info) -> str:
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} must not be blank")
        return v

    @field_validator("received_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-1",
                    "sender": "MobileMoney",
                    "body": "You have received GHS 50.00 from John Mensah. Transaction ID: 1234567890.",
                    "received_at": "2025-01-15T10:00:00Z"
                }
            ]
        }
    }


# =============================================================================
# Processing Results
# =============================================================================

class NotMoneyMessage(BaseModel):
    kind: Literal["not_money_message"] = "not_money_message"


class Duplicate(BaseModel):
    kind: Literal["duplicate"] = "duplicate"
    reference: str


class Saved(BaseModel):
    kind: Literal["saved"] = "saved"
    id: str


class CreditedWallet(BaseModel):
    kind: Literal["credited_wallet"] = "credited_wallet"
    id: str
    amount_delta: int
    new_balance: int


class CreditFailed(BaseModel):
    kind: Literal["credit_failed"] = "credit_failed"
    id: str
    reason: str


class StorageUnavailable(BaseModel):
    kind: Literal["storage_unavailable"] = "storage_unavailable"
    reason: str


ProcessResult = Annotated[
    Union[NotMoneyMessage, Duplicate, Saved, CreditedWallet, CreditFailed, StorageUnavailable],
    Field(discriminator="kind"),
]


# =============================================================================
# Pydantic Response Models
# =============================================================================

class SmsIngestResponse(BaseModel):
    """Response model for POST /sms; wraps the pipeline result."""
    status: str = Field(default="ok", description="Operation status")
    result: ProcessResult


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class SmsTransactionResponse(BaseModel):
    """
    A stored SMS transaction record.
    Maps database fields to API response format.
    """
    id: str
    user_id: str
    sender: str
    provider: str
    category: str
    amount_minor_units: int
    currency: str
    counterparty: Optional[str] = None
    reference: Optional[str] = None
    balance_after_minor_units: Optional[int] = None
    raw_message: str
    received_at: Optional[str] = None
    wallet_credited: bool
    credited_at: Optional[str] = None
    created_at: str

    model_config = {"from_attributes": True}


class SmsTransactionsListResponse(BaseModel):
    """
    Response model for GET /transactions with pagination.

    Contains:
    - data: records matching filters
    - total: count matching filters (ignoring pagination)
    - limit / offset: the page window used
    """
    data: list[SmsTransactionResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class WalletResponse(BaseModel):
    id: str
    user_id: str
    balance: int = Field(..., ge=0, description="Balance in minor units")
    currency: str
    wallet_type: str
    sync_status: str
    entry_count: int
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class WalletEntryResponse(BaseModel):
    id: str
    wallet_id: str
    sequence: int
    amount_delta: int
    entry_type: str
    balance_before: int
    balance_after: int
    reference: Optional[str] = None
    reference_type: Optional[str] = None
    description: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_entry(cls, entry) -> "WalletEntryResponse":
        return cls(
            id=entry.id,
            wallet_id=entry.wallet_id,
            sequence=entry.sequence,
            amount_delta=entry.amount_delta,
            entry_type=entry.entry_type,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            reference=entry.reference,
            reference_type=entry.reference_type,
            description=entry.description,
            metadata=entry.entry_metadata,
            created_at=entry.created_at,
        )


class WalletEntriesListResponse(BaseModel):
    """Entries of one wallet, newest first."""
    data: list[WalletEntryResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class RecoveryResponse(BaseModel):
    user_id: str
    credited: int = Field(..., ge=0, description="Records newly credited by this pass")


class ProviderCount(BaseModel):
    provider: str
    count: int = Field(..., ge=0)


class CategoryCount(BaseModel):
    category: str
    count: int = Field(..., ge=0)


class StatsResponse(BaseModel):
    """
    Response model for GET /stats.

    - total_transactions: all stored records
    - credited_transactions: records settled into a wallet
    - uncredited_received: Received records waiting for recovery
    - per_provider / per_category: counts, largest first
    - first/last_transaction_at: server timestamps (null if empty)
    """
    total_transactions: int = Field(..., ge=0)
    credited_transactions: int = Field(..., ge=0)
    uncredited_received: int = Field(..., ge=0)
    per_provider: list[ProviderCount] = Field(default_factory=list)
    per_category: list[CategoryCount] = Field(default_factory=list)
    first_transaction_at: Optional[str] = None
    last_transaction_at: Optional[str] = None


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class WalletVerificationResponse(BaseModel):
    wallet_id: str
    consistent: bool = Field(..., description="Ledger replay matches the stored balance")
