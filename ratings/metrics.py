"""
Prometheus metrics for the review engine, served at /metrics.
"""

from prometheus_client import Counter, Histogram

# =============================================================================
# CACHE
# =============================================================================

CACHE_LOOKUPS = Counter(
    "ratings_cache_lookups_total",
    "Read-through cache lookups",
    ["domain", "result"],
)

CACHE_EVICTIONS = Counter(
    "ratings_cache_evictions_total",
    "Eviction passes triggered by writes",
    ["event"],
)

CACHE_FAULTS = Counter(
    "ratings_cache_faults_total",
    "Cache calls that failed and were absorbed",
    ["operation"],
)

# =============================================================================
# REVIEWS AND AGGREGATES
# =============================================================================

REVIEW_TRANSITIONS = Counter(
    "ratings_review_transitions_total",
    "Applied moderation transitions",
    ["source", "target"],
)

AGGREGATE_WRITES = Counter(
    "ratings_aggregate_writes_total",
    "Conditional aggregate writes by outcome",
    ["outcome"],
)

# =============================================================================
# HTTP
# =============================================================================

REQUEST_DURATION = Histogram(
    "ratings_request_duration_seconds",
    "HTTP request latency",
    ["method", "status_code"],
)
