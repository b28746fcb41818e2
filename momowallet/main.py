import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from momowallet.config import settings
from momowallet.domain import RawMessage
from momowallet.ledger import get_wallet_for_user, list_entries, verify_wallet
from momowallet.logging_utils import RequestLoggingMiddleware, log_ingest_data, setup_logging
from momowallet.metrics import get_metrics, get_metrics_content_type, record_ingest_outcome
from momowallet.schemas import (
    CategoryCount,
    Duplicate,
    ErrorResponse,
    HealthResponse,
    ProviderCount,
    RecoveryResponse,
    SmsIngestRequest,
    SmsIngestResponse,
    SmsTransactionResponse,
    SmsTransactionsListResponse,
    StatsResponse,
    StorageUnavailable,
    WalletEntriesListResponse,
    WalletEntryResponse,
    WalletResponse,
    WalletVerificationResponse,
)
from momowallet.service import SmsIngestionService, get_ingestion_service
from momowallet.storage import (
    check_db_health,
    get_db,
    get_sms_transaction,
    get_sms_transactions,
    get_stats,
    init_db,
)
from momowallet.utils import verify_hmac_signature


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def _recovery_loop(interval: int) -> None:
    """Periodic RecoveryScanner sweep; runs the blocking work off the event loop."""
    service = get_ingestion_service()
    while True:
        await asyncio.sleep(interval)
        try:
            credited = await asyncio.to_thread(service.reprocess_all_uncredited)
        except SQLAlchemyError as e:
            logger.error(f"Recovery sweep failed: {e}")
            continue
        if credited:
            logger.info(f"Recovery sweep credited {credited} records")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - Startup: create tables, start the recovery sweep when configured
    - Shutdown: stop the sweep
    """
    init_db()
    sweep = None
    if settings.RECOVERY_INTERVAL_SECONDS > 0:
        logger.info(f"Starting recovery sweep every {settings.RECOVERY_INTERVAL_SECONDS}s")
        sweep = asyncio.create_task(_recovery_loop(settings.RECOVERY_INTERVAL_SECONDS))
    yield
    if sweep is not None:
        sweep.cancel()
        try:
            await sweep
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="MoMo Wallet API",
    description="Mobile-money SMS ingestion and token wallet ledger",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. DB is reachable and schema is applied
    2. WEBHOOK_SECRET is set (non-empty)

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="WEBHOOK_SECRET not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")

    return HealthResponse(status="ready")


# =============================================================================
# SMS Ingestion Route
# =============================================================================

def _reject(request: Request, result: str, status_code: int, detail: str) -> HTTPException:
    record_ingest_outcome(result)
    log_ingest_data(request=request, dup=False, result=result)
    return HTTPException(status_code=status_code, detail=detail)


@app.post(
    "/sms",
    response_model=SmsIngestResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Validation error"},
        503: {"description": "Storage unavailable, retry the delivery"},
    }
)
async def ingest_sms(
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
    db: Session = Depends(get_db),
    service: SmsIngestionService = Depends(get_ingestion_service),
):
    """
    Ingest one SMS delivered by a device (at-least-once).

    - Validates HMAC-SHA256 signature using X-Signature header
    - Validates request body against SmsIngestRequest
    - Runs the pipeline; redeliveries come back as a duplicate result

    Headers:
        - Content-Type: application/json
        - X-Signature: hex HMAC-SHA256 of raw body using WEBHOOK_SECRET
    """
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")

    if not x_signature or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
        logger.error("Missing or invalid X-Signature")
        raise _reject(request, "invalid_signature", status.HTTP_401_UNAUTHORIZED, "invalid signature")

    try:
        payload = SmsIngestRequest.model_validate(json.loads(raw_body))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Invalid JSON: {e}")
        raise _reject(request, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, f"Invalid JSON: {e}")
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        raise _reject(request, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, str(e))

    raw = RawMessage(sender=payload.sender, body=payload.body, received_at=payload.received_at)
    result = await run_in_threadpool(service.process, db, payload.user_id, raw)

    log_ingest_data(
        request=request,
        reference=result.reference if isinstance(result, Duplicate) else None,
        record_id=getattr(result, "id", None),
        dup=isinstance(result, Duplicate),
        result=result.kind,
    )

    if isinstance(result, StorageUnavailable):
        # upstream retries the whole delivery
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=SmsIngestResponse(status="unavailable", result=result).model_dump(mode="json"),
        )
    return SmsIngestResponse(result=result)


# =============================================================================
# Transaction Routes
# =============================================================================

@app.get("/transactions", response_model=SmsTransactionsListResponse)
async def list_transactions(
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    user_id: Annotated[str | None, Query(description="Filter by wallet owner")] = None,
    credited: Annotated[bool | None, Query(description="Filter by wallet_credited")] = None,
    reference: Annotated[str | None, Query(description="Filter by provider reference")] = None,
    provider: Annotated[str | None, Query(description="Filter by provider dialect")] = None,
    category: Annotated[str | None, Query(description="Filter by category")] = None,
    db: Session = Depends(get_db)
) -> SmsTransactionsListResponse:
    """
    List stored SMS transactions, ordered by created_at ASC, id ASC.

    total counts every record matching the filters, ignoring limit/offset.
    """
    records, total = get_sms_transactions(
        db=db,
        limit=limit,
        offset=offset,
        user_id=user_id,
        credited=credited,
        reference=reference,
        provider=provider.upper() if provider else None,
        category=category.upper() if category else None,
    )

    logger.info(f"GET /transactions: returned {len(records)} of {total} (limit={limit}, offset={offset})")

    return SmsTransactionsListResponse(
        data=[SmsTransactionResponse.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset
    )


@app.get(
    "/transactions/{transaction_id}",
    response_model=SmsTransactionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_transaction(transaction_id: str, db: Session = Depends(get_db)) -> SmsTransactionResponse:
    record = get_sms_transaction(db, transaction_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="transaction not found")
    return SmsTransactionResponse.model_validate(record)


# =============================================================================
# Wallet Routes
# =============================================================================

def _wallet_or_404(db: Session, user_id: str, currency: str | None):
    wallet = get_wallet_for_user(db, user_id, currency.upper() if currency else None)
    if wallet is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="wallet not found")
    return wallet


@app.get("/wallets/{user_id}", response_model=WalletResponse, responses={404: {"model": ErrorResponse}})
async def get_user_wallet(
    user_id: str,
    currency: Annotated[str | None, Query(min_length=3, max_length=3)] = None,
    db: Session = Depends(get_db)
) -> WalletResponse:
    """The user's TOKEN wallet (oldest one when currency is omitted)."""
    return WalletResponse.model_validate(_wallet_or_404(db, user_id, currency))


@app.get(
    "/wallets/{user_id}/entries",
    response_model=WalletEntriesListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_wallet_entries(
    user_id: str,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    currency: Annotated[str | None, Query(min_length=3, max_length=3)] = None,
    db: Session = Depends(get_db)
) -> WalletEntriesListResponse:
    """Ledger entries, newest first."""
    wallet = _wallet_or_404(db, user_id, currency)
    entries, total = list_entries(db, wallet.id, limit=limit, offset=offset)
    return WalletEntriesListResponse(
        data=[WalletEntryResponse.from_entry(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@app.get(
    "/wallets/{user_id}/verify",
    response_model=WalletVerificationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def verify_user_wallet(
    user_id: str,
    currency: Annotated[str | None, Query(min_length=3, max_length=3)] = None,
    db: Session = Depends(get_db)
) -> WalletVerificationResponse:
    """Replay the wallet's entries against its stored balance."""
    wallet = _wallet_or_404(db, user_id, currency)
    return WalletVerificationResponse(wallet_id=wallet.id, consistent=verify_wallet(db, wallet.id))


@app.post(
    "/wallets/{user_id}/recover",
    response_model=RecoveryResponse,
    responses={503: {"model": ErrorResponse, "description": "Storage unavailable"}},
)
async def recover_wallet(
    user_id: str,
    db: Session = Depends(get_db),
    service: SmsIngestionService = Depends(get_ingestion_service),
) -> RecoveryResponse:
    """Retry crediting the user's saved but uncredited Received records."""
    try:
        credited = await run_in_threadpool(service.reprocess_uncredited, db, user_id)
    except SQLAlchemyError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="pending records could not be read",
        )
    return RecoveryResponse(user_id=user_id, credited=credited)


# =============================================================================
# Stats Route
# =============================================================================

@app.get("/stats", response_model=StatsResponse)
async def get_statistics(db: Session = Depends(get_db)) -> StatsResponse:
    """
    Ingestion analytics: totals, credited vs pending, per provider/category
    counts and first/last stored timestamps (null when empty).
    """
    stats = get_stats(db)
    logger.info(f"GET /stats: {stats['total_transactions']} transactions")

    return StatsResponse(
        total_transactions=stats["total_transactions"],
        credited_transactions=stats["credited_transactions"],
        uncredited_received=stats["uncredited_received"],
        per_provider=[ProviderCount(**row) for row in stats["per_provider"]],
        per_category=[CategoryCount(**row) for row in stats["per_category"]],
        first_transaction_at=stats["first_transaction_at"],
        last_transaction_at=stats["last_transaction_at"],
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus text exposition of the counters in momowallet.metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
