"""
SMS ingestion pipeline and recovery sweep.

classify -> extract -> dedup -> build -> persist -> credit. Every failure past
the classifier is reported as a ProcessResult; nothing raised by storage or
the ledger escapes process().
"""

import logging
from functools import lru_cache
from typing import Callable, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from momowallet.config import settings
from momowallet.domain import (
    RawMessage,
    ReferenceType,
    TokenTransactionType,
    TransactionCategory,
)
from momowallet.events import LedgerEventBus, event_bus
from momowallet.extractor import SmsExtractor
from momowallet.ledger import LedgerError, apply_transaction, get_or_create_wallet
from momowallet.metrics import record_ingest_outcome, record_recovery_credits
from momowallet.models import SmsTransaction
from momowallet.records import build_record
from momowallet.schemas import (
    CreditedWallet,
    CreditFailed,
    Duplicate,
    NotMoneyMessage,
    ProcessResult,
    Saved,
    StorageUnavailable,
)
from momowallet.storage import (
    SessionLocal,
    check_duplicate,
    create_sms_transaction,
    get_uncredited_received,
    get_users_with_uncredited,
)
from momowallet.utils import content_fingerprint

logger = logging.getLogger(__name__)

FINGERPRINT_KEY_PREFIX = "fp:"


def is_creditable(record: SmsTransaction) -> bool:
    return (
        record.category == TransactionCategory.RECEIVED.value
        and record.amount_minor_units > 0
        and not record.wallet_credited
    )


def _record_id(record: SmsTransaction) -> str:
    """Primary key of a stored record; taken from its identity, so no reload."""
    identity = sa_inspect(record).identity
    return identity[0] if identity else record.id


def _dedup_key(reference: Optional[str], fingerprint: Optional[str]) -> str:
    if reference:
        return reference
    if fingerprint:
        return f"{FINGERPRINT_KEY_PREFIX}{fingerprint[:16]}"
    return ""


class SmsIngestionService:
    """
    Runs one raw message through the pipeline against a caller-owned session.

    Args:
        extractor: parsing front end; built for ``market`` when omitted.
        events: bus told about committed wallet changes.
        fingerprint_fallback: dedup reference-less messages by content hash.
    """

    def __init__(
        self,
        extractor: Optional[SmsExtractor] = None,
        events: Optional[LedgerEventBus] = None,
        market: Optional[str] = None,
        fingerprint_fallback: Optional[bool] = None,
    ):
        self.extractor = extractor or SmsExtractor(market or settings.MARKET)
        self.events = events
        if fingerprint_fallback is None:
            fingerprint_fallback = settings.DEDUP_FINGERPRINT_FALLBACK
        self.fingerprint_fallback = fingerprint_fallback

    def process(self, db: Session, user_id: str, raw: RawMessage) -> ProcessResult:
        outcome, result = self._process(db, user_id, raw)
        record_ingest_outcome(outcome)
        return result

    def _process(self, db: Session, user_id: str, raw: RawMessage) -> tuple[str, ProcessResult]:
        if not self.extractor.classifier.is_money_message(raw.sender, raw.body):
            logger.debug(f"Ignoring non-money message from {raw.sender!r}")
            return "not_money_message", NotMoneyMessage()

        parsed = self.extractor.parse(raw.sender, raw.body)
        if parsed is None:
            logger.warning(f"Parse failure: no amount in money message from {raw.sender!r}")
            return "parse_failed", NotMoneyMessage()

        fingerprint = None
        if parsed.reference is None and self.fingerprint_fallback:
            fingerprint = content_fingerprint(raw.sender, raw.body)

        try:
            if check_duplicate(db, parsed.reference, fingerprint) is not None:
                key = _dedup_key(parsed.reference, fingerprint)
                logger.info(f"Duplicate SMS transaction {key}, skipping")
                return "duplicate", Duplicate(reference=key)

            record = build_record(raw.sender, parsed, user_id, raw.received_at, fingerprint)
            # read before the insert commits and expires the instance
            record_id = record.id
            summary = f"{record.category} {record.amount_minor_units} {record.currency} from {record.provider}"
            creditable = is_creditable(record)
            success, is_duplicate = create_sms_transaction(db, record)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Storage unavailable while ingesting from {raw.sender!r}: {e}")
            return "storage_unavailable", StorageUnavailable(reason=str(e))

        if not success:
            logger.error(f"Storage unavailable: could not persist message from {raw.sender!r}")
            return "storage_unavailable", StorageUnavailable(reason="failed to persist transaction record")
        if is_duplicate:
            return "duplicate", Duplicate(reference=_dedup_key(parsed.reference, fingerprint))

        logger.info(f"Saved {summary} as {record_id}")
        if not creditable:
            return "saved", Saved(id=record_id)
        result = self.credit(db, record)
        return result.kind, result

    def credit(self, db: Session, record: SmsTransaction) -> ProcessResult:
        """
        Settle one stored Received record into its owner's TOKEN wallet.

        The ledger entry and the wallet_credited flip share a commit, so a
        record is either settled with exactly one entry or left for recovery.
        Every read of ``record`` past its key sits inside the guarded block,
        since an earlier commit may have expired it.
        """
        record_id = _record_id(record)

        def mark_credited(session: Session, entry) -> None:
            record.wallet_credited = True
            record.credited_at = entry.created_at

        try:
            wallet = get_or_create_wallet(db, record.user_id, record.currency)
            amount = record.amount_minor_units
            wallet = apply_transaction(
                db,
                wallet.id,
                amount,
                TokenTransactionType.SMS_CREDIT,
                reference=record_id,
                reference_type=ReferenceType.SMS_TRANSACTION,
                description=f"{record.provider} {record.currency} credit",
                metadata={
                    "provider": record.provider,
                    "sender": record.sender,
                    "sms_reference": record.reference or "",
                },
                on_applied=mark_credited,
                events=self.events,
            )
        except LedgerError as e:
            logger.error(f"Credit failed for SMS transaction {record_id}: {e}")
            return CreditFailed(id=record_id, reason=str(e))
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Credit failed for SMS transaction {record_id}, ledger unavailable: {e}")
            return CreditFailed(id=record_id, reason=f"ledger unavailable: {e}")

        return CreditedWallet(id=record_id, amount_delta=amount, new_balance=wallet.balance)

    def reprocess_uncredited(self, db: Session, user_id: str) -> int:
        """
        RecoveryScanner: retry crediting the user's saved-but-unsettled
        Received records. Returns how many were credited by this pass.

        Raises:
            SQLAlchemyError: the pending records could not be read.
        """
        try:
            pending = get_uncredited_received(db, user_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Recovery for user {user_id} could not read pending records: {e}")
            raise

        credited = 0
        for record in pending:
            result = self.credit(db, record)
            if isinstance(result, CreditedWallet):
                credited += 1

        if pending:
            logger.info(f"Recovery for user {user_id}: credited {credited} of {len(pending)} pending records")
        record_recovery_credits(credited)
        return credited

    def reprocess_all_uncredited(self, session_factory: Callable[[], Session] = SessionLocal) -> int:
        """
        Recovery sweep over every user with pending Received records.

        Raises:
            SQLAlchemyError: pending users or records could not be read.
        """
        with session_factory() as db:
            try:
                users = get_users_with_uncredited(db)
            except SQLAlchemyError as e:
                logger.error(f"Recovery sweep could not list pending users: {e}")
                raise
            return sum(self.reprocess_uncredited(db, user_id) for user_id in users)


@lru_cache()
def get_ingestion_service() -> SmsIngestionService:
    """Service wired to the configured market and the app event bus."""
    return SmsIngestionService(events=event_bus)
