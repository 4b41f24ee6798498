"""Prometheus metrics for progress-engine.

Every metric the service exposes is defined here, in one inventory.
Modules import the metric they own and increment/observe it at the
point of action.  Scraped from GET /metrics.

Counters only go up (use rate() in PromQL), gauges go up and down,
histograms bucket observations so Prometheus can compute percentiles.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Event pipeline
# ---------------------------------------------------------------------------

EVENTS_PROCESSED = Counter(
    "progress_events_total",
    "Progress events by type and outcome",
    # result: applied | noop | rejected | retried | dead_lettered
    ["event_type", "result"],
)

EVENT_PROCESSING_DURATION = Histogram(
    "progress_event_processing_seconds",
    "Time to aggregate one event and evaluate unlocks",
    # Most events are one CAS write plus criteria evaluation (a few ms).
    # Anything past 1s is usually CAS retries under contention.
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
)

CAS_CONFLICTS = Counter(
    "progress_cas_conflicts_total",
    "Compare-and-set version mismatches on aggregate writes",
    ["aggregate"],  # topic | path | streak
)

WORKER_QUEUE_DEPTH = Gauge(
    "progress_worker_queue_depth",
    "Events waiting in a worker partition",
    ["partition"],
)

# ---------------------------------------------------------------------------
# Unlocks and notifications
# ---------------------------------------------------------------------------

UNLOCKS = Counter(
    "progress_unlocks_total",
    "Achievements and milestones unlocked",
    ["kind"],  # achievement | milestone
)

NOTIFICATION_FAILURES = Counter(
    "progress_notification_failures_total",
    "Unlock notifications that could not be handed off (parked in outbox)",
)

# ---------------------------------------------------------------------------
# Search ranking
# ---------------------------------------------------------------------------

RANKING_RULE_HITS = Counter(
    "ranking_rule_hits_total",
    "Boost/bury rules that fired for a candidate document",
    ["rule_id"],
)

SEARCH_PROVIDER_ERRORS = Counter(
    "search_provider_errors_total",
    "Failed attempts against the external search provider",
    ["reason"],  # timeout | transport | status
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "unlock_notifications"
)
