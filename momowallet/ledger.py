"""
Token wallet ledger.

Every balance change goes through apply_transaction, which updates the wallet
row and appends a TokenTransaction in one commit. Writers to the same wallet
are serialized by an in-process per-wallet lock plus a row lock (FOR UPDATE on
databases that support it); the unique (wallet_id, sequence) constraint
rejects a lost update that slips past both, e.g. from another process.
"""

import json
import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from momowallet.domain import ReferenceType, SyncStatus, TokenTransactionType, WalletType
from momowallet.events import LedgerEventBus, WalletChanged
from momowallet.metrics import record_wallet_entry
from momowallet.models import TokenTransaction, TokenWallet, generate_uuid
from momowallet.storage import utc_now_iso

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class LedgerError(Exception):
    """Base class for ledger failures."""


class WalletNotFoundError(LedgerError):
    def __init__(self, wallet_id: str):
        super().__init__(f"wallet {wallet_id} not found")
        self.wallet_id = wallet_id


class InsufficientBalanceError(LedgerError):
    def __init__(self, wallet_id: str, balance: int, amount_delta: int):
        super().__init__(
            f"insufficient balance in wallet {wallet_id}: balance={balance}, delta={amount_delta}"
        )
        self.wallet_id = wallet_id
        self.balance = balance
        self.amount_delta = amount_delta


class DuplicateLedgerEntryError(LedgerError):
    def __init__(self, wallet_id: str, reference_type: str, reference: str):
        super().__init__(f"{reference_type} {reference} already applied to wallet {wallet_id}")
        self.wallet_id = wallet_id
        self.reference_type = reference_type
        self.reference = reference


class ConcurrentUpdateError(LedgerError):
    """Another writer appended to the wallet between our read and our commit."""


# =============================================================================
# Per-wallet locks
# =============================================================================

_registry_lock = threading.Lock()
# Entries live only while some writer holds a reference to the lock
_wallet_locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()


@contextmanager
def wallet_lock(wallet_id: str) -> Iterator[None]:
    """Serialize in-process writers of one wallet."""
    with _registry_lock:
        lock = _wallet_locks.setdefault(wallet_id, threading.RLock())
    with lock:
        yield


# =============================================================================
# Wallet queries
# =============================================================================

def get_wallet(db: Session, wallet_id: str) -> Optional[TokenWallet]:
    return db.query(TokenWallet).filter(TokenWallet.id == wallet_id).first()


def get_wallet_for_user(
    db: Session,
    user_id: str,
    currency: Optional[str] = None,
    wallet_type: WalletType = WalletType.TOKEN,
) -> Optional[TokenWallet]:
    """The user's wallet of this type; the oldest one when currency is not given."""
    query = db.query(TokenWallet).filter(
        TokenWallet.user_id == user_id,
        TokenWallet.wallet_type == wallet_type.value,
    )
    if currency:
        query = query.filter(TokenWallet.currency == currency)
    return query.order_by(TokenWallet.created_at.asc(), TokenWallet.id.asc()).first()


def get_balance(db: Session, user_id: str, currency: Optional[str] = None) -> int:
    """Token balance in minor units; 0 for a user that has no wallet yet."""
    wallet = get_wallet_for_user(db, user_id, currency)
    return wallet.balance if wallet else 0


def get_or_create_wallet(
    db: Session,
    user_id: str,
    currency: str,
    wallet_type: WalletType = WalletType.TOKEN,
) -> TokenWallet:
    """
    Return the user's wallet, creating an empty one on first use.

    A concurrent creator wins the unique (user_id, wallet_type, currency)
    constraint; the loser re-reads the winner's row.
    """
    wallet = get_wallet_for_user(db, user_id, currency, wallet_type)
    if wallet is not None:
        return wallet

    now = utc_now_iso()
    wallet = TokenWallet(
        id=generate_uuid(),
        user_id=user_id,
        balance=0,
        currency=currency,
        wallet_type=wallet_type.value,
        sync_status=SyncStatus.PENDING.value,
        entry_count=0,
        created_at=now,
        updated_at=now,
    )
    db.add(wallet)
    try:
        db.commit()
        logger.info(f"Created {wallet_type.value} wallet {wallet.id} for user {user_id} ({currency})")
    except IntegrityError:
        db.rollback()
        wallet = get_wallet_for_user(db, user_id, currency, wallet_type)
        if wallet is None:
            raise
    return wallet


# =============================================================================
# Mutation
# =============================================================================

def _entry_exists(db: Session, wallet_id: str, reference_type: str, reference: str) -> bool:
    return (
        db.query(TokenTransaction.id)
        .filter(
            TokenTransaction.wallet_id == wallet_id,
            TokenTransaction.reference_type == reference_type,
            TokenTransaction.reference == reference,
        )
        .first()
        is not None
    )


def apply_transaction(
    db: Session,
    wallet_id: str,
    amount_delta: int,
    entry_type: TokenTransactionType,
    reference: Optional[str] = None,
    reference_type: Optional[ReferenceType] = None,
    description: Optional[str] = None,
    metadata: Optional[dict[str, str]] = None,
    on_applied: Optional[Callable[[Session, TokenTransaction], None]] = None,
    events: Optional[LedgerEventBus] = None,
) -> TokenWallet:
    """
    Apply a signed delta to a wallet and append the matching ledger entry.

    Args:
        on_applied: called with the session and the new entry before commit;
            whatever it changes commits together with the entry.
        events: bus notified with a WalletChanged after the commit.

    Raises:
        WalletNotFoundError, InsufficientBalanceError (nothing written),
        DuplicateLedgerEntryError when (reference_type, reference) was already
        applied to this wallet, ConcurrentUpdateError on a lost sequence race,
        SQLAlchemyError when storage fails.
    """
    ref_type = reference_type.value if reference_type else None

    with wallet_lock(wallet_id):
        try:
            wallet = (
                db.query(TokenWallet)
                .filter(TokenWallet.id == wallet_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if wallet is None:
                raise WalletNotFoundError(wallet_id)

            if reference and ref_type and _entry_exists(db, wallet_id, ref_type, reference):
                raise DuplicateLedgerEntryError(wallet_id, ref_type, reference)

            balance_before = wallet.balance
            balance_after = balance_before + amount_delta
            if balance_after < 0:
                raise InsufficientBalanceError(wallet_id, balance_before, amount_delta)

            now = utc_now_iso()
            entry = TokenTransaction(
                id=generate_uuid(),
                wallet_id=wallet_id,
                sequence=wallet.entry_count + 1,
                amount_delta=amount_delta,
                entry_type=entry_type.value,
                balance_before=balance_before,
                balance_after=balance_after,
                reference=reference,
                reference_type=ref_type,
                description=description,
                metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
                created_at=now,
            )
            wallet.balance = balance_after
            wallet.entry_count = entry.sequence
            wallet.sync_status = SyncStatus.PENDING.value
            wallet.updated_at = now
            db.add(entry)

            if on_applied is not None:
                on_applied(db, entry)

            db.commit()

        except LedgerError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            if reference and ref_type and _entry_exists(db, wallet_id, ref_type, reference):
                raise DuplicateLedgerEntryError(wallet_id, ref_type, reference) from e
            raise ConcurrentUpdateError(f"wallet {wallet_id} changed during update") from e
        except Exception:
            db.rollback()
            raise

        event = WalletChanged(
            wallet_id=wallet.id,
            user_id=wallet.user_id,
            currency=wallet.currency,
            balance=wallet.balance,
            entry_id=entry.id,
            sequence=entry.sequence,
            amount_delta=entry.amount_delta,
            entry_type=entry.entry_type,
            reference=entry.reference,
            reference_type=entry.reference_type,
            created_at=entry.created_at,
        )

    logger.info(
        f"Applied {entry_type.value} {amount_delta:+d} to wallet {wallet_id}: "
        f"{balance_before} -> {balance_after} (seq {event.sequence})"
    )
    record_wallet_entry(entry_type.value)
    if events is not None:
        events.publish(event)
    return wallet


# =============================================================================
# History and verification
# =============================================================================

def list_entries(
    db: Session,
    wallet_id: str,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[list[TokenTransaction], int]:
    """Entries of a wallet, newest (highest sequence) first."""
    query = db.query(TokenTransaction).filter(TokenTransaction.wallet_id == wallet_id)
    total = query.count()
    entries = query.order_by(TokenTransaction.sequence.desc()).offset(offset).limit(limit).all()
    return entries, total


def latest_entry(db: Session, wallet_id: str) -> Optional[TokenTransaction]:
    return (
        db.query(TokenTransaction)
        .filter(TokenTransaction.wallet_id == wallet_id)
        .order_by(TokenTransaction.sequence.desc())
        .first()
    )


def verify_wallet(db: Session, wallet_id: str) -> bool:
    """
    Replay a wallet's entries and check them against the stored summary.

    Holds when sequences run 1..n without gaps, each entry continues from the
    previous balance_after (0 for the first), balance_after equals
    balance_before + amount_delta, and the wallet balance equals the last
    balance_after.
    """
    wallet = get_wallet(db, wallet_id)
    if wallet is None:
        raise WalletNotFoundError(wallet_id)

    entries = (
        db.query(TokenTransaction)
        .filter(TokenTransaction.wallet_id == wallet_id)
        .order_by(TokenTransaction.sequence.asc())
        .all()
    )

    running = 0
    for expected_sequence, entry in enumerate(entries, start=1):
        if entry.sequence != expected_sequence:
            logger.error(f"Wallet {wallet_id}: sequence gap at {expected_sequence} (found {entry.sequence})")
            return False
        if entry.balance_before != running:
            logger.error(f"Wallet {wallet_id}: entry {entry.sequence} starts at {entry.balance_before}, expected {running}")
            return False
        if entry.balance_after != entry.balance_before + entry.amount_delta:
            logger.error(f"Wallet {wallet_id}: entry {entry.sequence} does not add up")
            return False
        running = entry.balance_after

    if wallet.balance != running or wallet.entry_count != len(entries):
        logger.error(
            f"Wallet {wallet_id}: balance {wallet.balance}/{wallet.entry_count} entries "
            f"disagrees with ledger {running}/{len(entries)}"
        )
        return False
    return True
