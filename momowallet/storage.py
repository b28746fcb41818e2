import logging
from datetime import datetime, timezone
from typing import Generator, Optional, Tuple

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from momowallet.config import settings

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("sms_transactions", "token_wallets", "token_transactions")


def _connect_args(url: str) -> dict:
    # check_same_thread=False lets SQLite sessions hop between FastAPI worker threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False, "timeout": 30}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utc_now_iso() -> str:
    """Server timestamp, ISO-8601 UTC with microseconds (sorts lexically)."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from momowallet import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and every table exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        existing = set(inspect(engine).get_table_names())
        missing = [t for t in REQUIRED_TABLES if t not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# SMS Transaction Repository Functions
# =============================================================================

def check_duplicate(db: Session, reference: Optional[str] = None, fingerprint: Optional[str] = None):
    """
    Deduplication gate: look up an already stored message.

    Matches on reference when one was extracted, otherwise on the content
    fingerprint. With neither key there is nothing to compare and None is
    returned.
    """
    from momowallet.models import SmsTransaction

    if reference:
        return db.query(SmsTransaction).filter(SmsTransaction.reference == reference).first()
    if fingerprint:
        return db.query(SmsTransaction).filter(SmsTransaction.fingerprint == fingerprint).first()
    return None


def create_sms_transaction(db: Session, record) -> Tuple[bool, bool]:
    """
    Persist a freshly built SmsTransaction (idempotent on reference/fingerprint).

    Returns:
        Tuple of (success: bool, is_duplicate: bool)
        - (True, False): Record created
        - (True, True): Reference/fingerprint already stored (lost the race)
        - (False, False): Storage error
    """
    logger.info(f"Storing SMS transaction: id={record.id}, reference={record.reference}")
    try:
        db.add(record)
        db.commit()
        return (True, False)

    except IntegrityError:
        # unique reference/fingerprint: another delivery committed first
        db.rollback()
        logger.info(f"Duplicate SMS transaction detected on insert: {record.reference or record.fingerprint}")
        return (True, True)

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store SMS transaction {record.id}: {e}")
        return (False, False)


def get_sms_transaction(db: Session, transaction_id: str):
    from momowallet.models import SmsTransaction

    return db.query(SmsTransaction).filter(SmsTransaction.id == transaction_id).first()


def get_sms_transactions(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    user_id: Optional[str] = None,
    credited: Optional[bool] = None,
    reference: Optional[str] = None,
    provider: Optional[str] = None,
    category: Optional[str] = None,
) -> Tuple[list, int]:
    """
    Retrieve SMS transactions with pagination and filtering.

    Returns:
        Tuple of (records list, total count matching filters)
    """
    from momowallet.models import SmsTransaction

    logger.debug(
        f"Querying SMS transactions: user={user_id}, credited={credited}, reference={reference}, "
        f"provider={provider}, category={category}, limit={limit}, offset={offset}"
    )

    query = db.query(SmsTransaction)
    if user_id:
        query = query.filter(SmsTransaction.user_id == user_id)
    if credited is not None:
        query = query.filter(SmsTransaction.wallet_credited == credited)
    if reference:
        query = query.filter(SmsTransaction.reference == reference)
    if provider:
        query = query.filter(SmsTransaction.provider == provider)
    if category:
        query = query.filter(SmsTransaction.category == category)

    total = query.count()

    # created_at ASC, id ASC (deterministic)
    query = query.order_by(SmsTransaction.created_at.asc(), SmsTransaction.id.asc())
    records = query.offset(offset).limit(limit).all()
    logger.debug(f"Retrieved {len(records)} of {total} SMS transactions")
    return records, total


def get_uncredited_received(db: Session, user_id: Optional[str] = None) -> list:
    """Creditable Received records (amount > 0) that were stored but never settled."""
    from momowallet.domain import TransactionCategory
    from momowallet.models import SmsTransaction

    query = db.query(SmsTransaction).filter(
        SmsTransaction.category == TransactionCategory.RECEIVED.value,
        SmsTransaction.wallet_credited.is_(False),
        SmsTransaction.amount_minor_units > 0,
    )
    if user_id:
        query = query.filter(SmsTransaction.user_id == user_id)
    return query.order_by(SmsTransaction.created_at.asc(), SmsTransaction.id.asc()).all()


def get_users_with_uncredited(db: Session) -> list[str]:
    from momowallet.domain import TransactionCategory
    from momowallet.models import SmsTransaction

    rows = (
        db.query(SmsTransaction.user_id)
        .filter(
            SmsTransaction.category == TransactionCategory.RECEIVED.value,
            SmsTransaction.wallet_credited.is_(False),
            SmsTransaction.amount_minor_units > 0,
        )
        .distinct()
        .all()
    )
    return [row.user_id for row in rows]


def get_stats(db: Session) -> dict:
    """
    Ingestion statistics for the /stats endpoint.

    Computes:
    - total_transactions / credited_transactions / uncredited_received
    - per-provider and per-category counts
    - first/last stored timestamps (null when empty)
    """
    from momowallet.domain import TransactionCategory
    from momowallet.models import SmsTransaction

    total = db.query(func.count(SmsTransaction.id)).scalar() or 0
    credited = (
        db.query(func.count(SmsTransaction.id))
        .filter(SmsTransaction.wallet_credited.is_(True))
        .scalar() or 0
    )
    uncredited = (
        db.query(func.count(SmsTransaction.id))
        .filter(
            SmsTransaction.category == TransactionCategory.RECEIVED.value,
            SmsTransaction.wallet_credited.is_(False),
            SmsTransaction.amount_minor_units > 0,
        )
        .scalar() or 0
    )

    per_provider = (
        db.query(SmsTransaction.provider, func.count(SmsTransaction.id).label("count"))
        .group_by(SmsTransaction.provider)
        .order_by(func.count(SmsTransaction.id).desc(), SmsTransaction.provider.asc())
        .all()
    )
    per_category = (
        db.query(SmsTransaction.category, func.count(SmsTransaction.id).label("count"))
        .group_by(SmsTransaction.category)
        .order_by(func.count(SmsTransaction.id).desc(), SmsTransaction.category.asc())
        .all()
    )

    first_ts = db.query(func.min(SmsTransaction.created_at)).scalar()
    last_ts = db.query(func.max(SmsTransaction.created_at)).scalar()

    logger.info(f"Stats computed: {total} transactions, {credited} credited")

    return {
        "total_transactions": total,
        "credited_transactions": credited,
        "uncredited_received": uncredited,
        "per_provider": [{"provider": row.provider, "count": row.count} for row in per_provider],
        "per_category": [{"category": row.category, "count": row.count} for row in per_category],
        "first_transaction_at": first_ts,
        "last_transaction_at": last_ts,
    }
