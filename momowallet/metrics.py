"""
Prometheus metrics for the SMS wallet service.

This module provides:
- HTTP request counter (method, path, status)
- SMS ingestion outcome counter (result)
- Wallet ledger entry counter (type)
- Recovery sweep credit counter
- Request latency histogram (method, path)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: not_money_message, parse_failed, duplicate, saved, credited_wallet,
# credit_failed, storage_unavailable, invalid_signature, validation_error
sms_ingest_total = Counter(
    "sms_ingest_total",
    "Total SMS ingestion outcomes",
    labelnames=["result"]
)

wallet_entries_total = Counter(
    "wallet_entries_total",
    "Ledger entries appended to token wallets",
    labelnames=["type"]
)

recovery_credited_total = Counter(
    "recovery_credited_total",
    "Stored records credited by a recovery pass"
)

# Default buckets: .005 ... 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template when known (e.g. /wallets/{user_id}), else raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_ingest_outcome(result: str) -> None:
    """Record an SMS ingestion outcome (see sms_ingest_total for values)."""
    sms_ingest_total.labels(result=result).inc()


def record_wallet_entry(entry_type: str) -> None:
    wallet_entries_total.labels(type=entry_type).inc()


def record_recovery_credits(count: int) -> None:
    if count > 0:
        recovery_credited_total.inc(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
