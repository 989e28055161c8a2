"""
Prometheus metrics definitions for achievement-sync.

Metrics are organized by category:
- Pipeline metrics: full reconciliation runs and their latency
- Cache metrics: soft-sync decisions (warm hit vs cold run)
- Integrity metrics: verification outcomes and recalculations
- Achievement metrics: completions and increments
- HTTP/API metrics: request counts

Metrics are exposed at the /metrics endpoint for Prometheus scraping.
"""

import logging
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# =============================================================================
# Pipeline Metrics
# =============================================================================

pipeline_runs_total = Counter(
    "achievement_pipeline_runs_total",
    "Full progress -> evaluation -> summary pipeline runs",
    ["trigger", "status"],  # trigger: view/refresh/force/increment/external, status: success/partial/error
)

pipeline_duration_seconds = Histogram(
    "achievement_pipeline_duration_seconds",
    "Pipeline run duration in seconds",
    ["trigger"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# =============================================================================
# Cache Metrics
# =============================================================================

sync_cache_decisions_total = Counter(
    "achievement_sync_cache_decisions_total",
    "Soft sync requests by cache decision",
    ["decision"],  # decision: warm/cold
)

app_time_flushes_total = Counter(
    "achievement_app_time_flushes_total",
    "App-time increments by throttle outcome",
    ["outcome"],  # outcome: flushed/held/failed
)

# =============================================================================
# Integrity Metrics
# =============================================================================

integrity_checks_total = Counter(
    "achievement_integrity_checks_total",
    "Progress counter integrity checks",
    ["result"],  # result: fresh/valid/mismatch/error
)

progress_recalculations_total = Counter(
    "achievement_progress_recalculations_total",
    "Progress counter records rebuilt from authoritative sources",
)

# =============================================================================
# Achievement Metrics
# =============================================================================

achievements_completed_total = Counter(
    "achievements_completed_total",
    "Achievements transitioned to completed",
    ["achievement_id"],
)

counter_increments_total = Counter(
    "achievement_counter_increments_total",
    "Counter increments applied to the progress store",
    ["counter"],
)

# =============================================================================
# HTTP/API Metrics
# =============================================================================

http_requests_total = Counter(
    "achievement_http_requests_total",
    "Total HTTP requests received",
    ["method", "endpoint", "status"],
)
