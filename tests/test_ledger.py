"""
Tests for the token wallet ledger.

Tests cover:
- Lazy wallet creation (one wallet per user/type/currency)
- Entry invariant: balance_after == balance_before + amount_delta
- Wallet balance equals the latest entry's balance_after
- Insufficient balance fails without mutating state
- One entry per (reference_type, reference)
- Concurrent credits to one wallet are serialized
"""

import gc
import threading

import pytest

from momowallet import ledger as ledger_module
from momowallet.domain import ReferenceType, TokenTransactionType
from momowallet.ledger import (
    DuplicateLedgerEntryError,
    InsufficientBalanceError,
    WalletNotFoundError,
    apply_transaction,
    get_balance,
    get_or_create_wallet,
    latest_entry,
    list_entries,
    verify_wallet,
    wallet_lock,
)
from momowallet.models import TokenTransaction, TokenWallet
from momowallet.storage import SessionLocal


class TestWalletCreation:

    def test_created_lazily_with_zero_balance(self, db):
        assert get_balance(db, "user-1") == 0

        wallet = get_or_create_wallet(db, "user-1", "GHS")

        assert wallet.balance == 0
        assert wallet.entry_count == 0
        assert wallet.wallet_type == "TOKEN"
        assert wallet.sync_status == "PENDING"

    def test_one_wallet_per_user_and_currency(self, db):
        first = get_or_create_wallet(db, "user-1", "GHS")
        again = get_or_create_wallet(db, "user-1", "GHS")
        other_currency = get_or_create_wallet(db, "user-1", "RWF")

        assert first.id == again.id
        assert other_currency.id != first.id
        assert db.query(TokenWallet).count() == 2


class TestApplyTransaction:

    def test_credit_appends_entry(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")

        updated = apply_transaction(
            db, wallet.id, 5000, TokenTransactionType.SMS_CREDIT,
            reference="sms-1", reference_type=ReferenceType.SMS_TRANSACTION,
            description="credit", metadata={"provider": "MTN_GH"},
        )

        assert updated.balance == 5000
        entry = latest_entry(db, wallet.id)
        assert entry.sequence == 1
        assert entry.balance_before == 0
        assert entry.balance_after == 5000
        assert entry.amount_delta == 5000
        assert entry.entry_type == "SMS_CREDIT"
        assert entry.entry_metadata == {"provider": "MTN_GH"}

    def test_invariant_over_mixed_entries(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")
        for delta, kind in [
            (1000, TokenTransactionType.SMS_CREDIT),
            (-300, TokenTransactionType.PURCHASE),
            (50, TokenTransactionType.REFUND),
            (-750, TokenTransactionType.PURCHASE),
        ]:
            apply_transaction(db, wallet.id, delta, kind)

        entries = db.query(TokenTransaction).filter_by(wallet_id=wallet.id).all()
        for entry in entries:
            assert entry.balance_after == entry.balance_before + entry.amount_delta

        db.refresh(wallet)
        assert wallet.balance == 0
        assert wallet.balance == latest_entry(db, wallet.id).balance_after
        assert verify_wallet(db, wallet.id)

    def test_insufficient_balance_leaves_state_untouched(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")
        apply_transaction(db, wallet.id, 100, TokenTransactionType.SMS_CREDIT)

        with pytest.raises(InsufficientBalanceError):
            apply_transaction(db, wallet.id, -101, TokenTransactionType.PURCHASE)

        db.refresh(wallet)
        assert wallet.balance == 100
        assert wallet.entry_count == 1
        assert db.query(TokenTransaction).count() == 1

    def test_unknown_wallet(self, db):
        with pytest.raises(WalletNotFoundError):
            apply_transaction(db, "missing", 1, TokenTransactionType.ADJUSTMENT)

    def test_same_reference_applied_once(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")
        apply_transaction(
            db, wallet.id, 100, TokenTransactionType.SMS_CREDIT,
            reference="sms-1", reference_type=ReferenceType.SMS_TRANSACTION,
        )

        with pytest.raises(DuplicateLedgerEntryError):
            apply_transaction(
                db, wallet.id, 100, TokenTransactionType.SMS_CREDIT,
                reference="sms-1", reference_type=ReferenceType.SMS_TRANSACTION,
            )

        assert get_balance(db, "user-1", "GHS") == 100

    def test_on_applied_failure_rolls_back_everything(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")

        def explode(session, entry):
            raise RuntimeError("callback failed")

        with pytest.raises(RuntimeError):
            apply_transaction(db, wallet.id, 100, TokenTransactionType.SMS_CREDIT, on_applied=explode)

        db.refresh(wallet)
        assert wallet.balance == 0
        assert db.query(TokenTransaction).count() == 0


class TestHistory:

    def test_entries_newest_first(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")
        for amount in (100, 200, 300):
            apply_transaction(db, wallet.id, amount, TokenTransactionType.SMS_CREDIT)

        entries, total = list_entries(db, wallet.id, limit=2, offset=0)

        assert total == 3
        assert [e.sequence for e in entries] == [3, 2]
        assert entries[0].balance_after == 600

    def test_verify_detects_tampering(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")
        apply_transaction(db, wallet.id, 100, TokenTransactionType.SMS_CREDIT)

        wallet.balance = 999
        db.commit()

        assert not verify_wallet(db, wallet.id)


class TestConcurrency:

    def test_parallel_credits_to_one_wallet_are_serialized(self, db):
        wallet = get_or_create_wallet(db, "user-1", "GHS")
        wallet_id = wallet.id
        errors = []

        def credit(i: int) -> None:
            session = SessionLocal()
            try:
                apply_transaction(
                    session, wallet_id, 100, TokenTransactionType.SMS_CREDIT,
                    reference=f"sms-{i}", reference_type=ReferenceType.SMS_TRANSACTION,
                )
            except Exception as e:  # collected and asserted below
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=credit, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        db.expire_all()
        assert get_balance(db, "user-1", "GHS") == 1000
        assert verify_wallet(db, wallet_id)
        sequences = sorted(e.sequence for e in db.query(TokenTransaction).all())
        assert sequences == list(range(1, 11))

    def test_wallet_lock_released_when_unused(self):
        with wallet_lock("wallet-x"):
            with wallet_lock("wallet-x"):
                assert "wallet-x" in ledger_module._wallet_locks
        gc.collect()

        assert "wallet-x" not in ledger_module._wallet_locks
