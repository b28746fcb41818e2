"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import json
import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint

from momowallet.storage import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class SmsTransaction(Base):
    """
    One successfully extracted money message.

    Table: sms_transactions
    Unique: reference (dedup backstop), fingerprint (reference-less dedup)
    wallet_credited only ever flips False -> True.
    """
    __tablename__ = "sms_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    sender = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    category = Column(String, nullable=False, index=True)
    amount_minor_units = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    counterparty = Column(String, nullable=True)
    reference = Column(String, nullable=True, unique=True, index=True)
    fingerprint = Column(String(64), nullable=True, unique=True)
    balance_after_minor_units = Column(Integer, nullable=True)
    raw_message = Column(Text, nullable=False)
    received_at = Column(String, nullable=True)  # ISO-8601 UTC, device time
    wallet_credited = Column(Boolean, nullable=False, default=False, index=True)
    credited_at = Column(String, nullable=True)
    created_at = Column(String, nullable=False)  # Server time ISO-8601


class TokenWallet(Base):
    """
    Per-user wallet; balance is in minor units and never negative.

    Table: token_wallets
    Unique: (user_id, wallet_type, currency)
    Mutated only through ledger.apply_transaction.
    """
    __tablename__ = "token_wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "wallet_type", "currency", name="uq_wallet_owner"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    balance = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    wallet_type = Column(String, nullable=False)
    sync_status = Column(String, nullable=False)
    entry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class TokenTransaction(Base):
    """
    Append-only ledger row: balance_after == balance_before + amount_delta.

    Table: token_transactions
    Unique: (wallet_id, sequence) so two writers cannot both append entry N,
    (wallet_id, reference_type, reference) so a source is applied at most once.
    """
    __tablename__ = "token_transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "sequence", name="uq_entry_sequence"),
        UniqueConstraint("wallet_id", "reference_type", "reference", name="uq_entry_reference"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    wallet_id = Column(String(36), ForeignKey("token_wallets.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    amount_delta = Column(Integer, nullable=False)
    entry_type = Column(String, nullable=False)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reference = Column(String, nullable=True)
    reference_type = Column(String, nullable=True)
    description = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json = Column("metadata", Text, nullable=True)
    created_at = Column(String, nullable=False)

    @property
    def entry_metadata(self) -> dict:
        return json.loads(self.metadata_json) if self.metadata_json else {}
