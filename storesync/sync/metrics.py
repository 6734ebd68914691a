"""
Sync Metrics

Prometheus collectors shared by the sync components and exposed on /metrics.
"""

from prometheus_client import Counter, Gauge, Histogram


# =============================================================================
# RUNS
# =============================================================================

SYNC_RUNS = Counter(
    "storesync_runs_total",
    "Sync runs by trigger and outcome",
    ["trigger", "status"],
)

SYNC_RUN_DURATION = Histogram(
    "storesync_run_duration_seconds",
    "Wall time of a tenant sync run",
    ["trigger"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600),
)

RUNS_IN_FLIGHT = Gauge(
    "storesync_runs_in_flight",
    "Tenant sync runs currently executing",
)


# =============================================================================
# RECORDS
# =============================================================================

RECORDS_UPSERTED = Counter(
    "storesync_records_upserted_total",
    "Records written to the store",
    ["entity_kind", "source", "action"],
)

RECORDS_SKIPPED = Counter(
    "storesync_records_skipped_total",
    "Records skipped instead of stored",
    ["entity_kind", "reason"],
)

FETCH_REQUESTS = Counter(
    "storesync_fetch_requests_total",
    "Platform page requests by outcome (HTTP status or error class)",
    ["entity_kind", "outcome"],
)

WEBHOOKS_RECEIVED = Counter(
    "storesync_webhooks_received_total",
    "Webhook deliveries by topic and outcome",
    ["topic", "outcome"],
)
