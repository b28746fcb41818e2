"""
RecordBuilder: ParsedTransaction + provenance -> unsaved SmsTransaction row.
"""

from datetime import datetime, timezone
from typing import Optional

from momowallet.domain import ParsedTransaction
from momowallet.models import SmsTransaction, generate_uuid
from momowallet.storage import utc_now_iso


def _iso_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_record(
    sender: str,
    parsed: ParsedTransaction,
    user_id: str,
    received_at: Optional[datetime] = None,
    fingerprint: Optional[str] = None,
) -> SmsTransaction:
    """
    Pure transformation: new id, server created_at, wallet_credited=False.
    Nothing is added to a session here.
    """
    return SmsTransaction(
        id=generate_uuid(),
        user_id=user_id,
        sender=sender,
        provider=parsed.provider.value,
        category=parsed.category.value,
        amount_minor_units=parsed.amount_minor_units,
        currency=parsed.currency,
        counterparty=parsed.counterparty,
        reference=parsed.reference,
        fingerprint=fingerprint,
        balance_after_minor_units=parsed.balance_after_minor_units,
        raw_message=parsed.raw_message,
        received_at=_iso_utc(received_at) if received_at else None,
        wallet_credited=False,
        credited_at=None,
        created_at=utc_now_iso(),
    )
