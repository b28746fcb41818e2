"""Mobile-money SMS ingestion and token wallet ledger."""
