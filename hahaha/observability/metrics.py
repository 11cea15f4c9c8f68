"""Prometheus metrics for hahaha."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Watcher metrics
watcher_events_total = Counter(
    "hahaha_watcher_events_total",
    "Total watch events received by type",
    ["event_type"],
)

watcher_relistings_total = Counter(
    "hahaha_watcher_relistings_total",
    "Total full list operations",
    ["reason"],
)

watcher_errors_total = Counter(
    "hahaha_watcher_errors_total",
    "Total watch stream errors",
    ["error"],
)

watcher_backoff_seconds = Histogram(
    "hahaha_watcher_backoff_seconds",
    "Watcher backoff duration in seconds",
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

# Cache metrics
cache_resources = Gauge(
    "hahaha_cache_resources",
    "Number of cached resources",
)

cache_stale_events_total = Counter(
    "hahaha_cache_stale_events_total",
    "Watch events ignored because their resourceVersion was not newer",
)

cache_synthetic_events_total = Counter(
    "hahaha_cache_synthetic_events_total",
    "Change notifications synthesized by a relist diff",
    ["change"],
)

cache_resyncs_total = Counter(
    "hahaha_cache_resyncs_total",
    "Periodic resync sweeps that re-enqueued every known key",
)

# Queue metrics
queue_depth = Gauge(
    "hahaha_queue_depth",
    "Keys waiting in the work queue (ready or delayed)",
)

queue_in_flight = Gauge(
    "hahaha_queue_in_flight",
    "Keys currently being reconciled",
)

queue_adds_total = Counter(
    "hahaha_queue_adds_total",
    "Total enqueue calls by outcome",
    ["outcome"],
)

queue_retries_total = Counter(
    "hahaha_queue_retries_total",
    "Total keys scheduled for retry after an error",
)

queue_dropped_total = Counter(
    "hahaha_queue_dropped_total",
    "Keys dropped after exhausting permanent-error retries",
)

queue_backoff_seconds = Histogram(
    "hahaha_queue_backoff_seconds",
    "Per-key backoff delay scheduled after a failed reconcile",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 60.0, 300.0),
)

# Reconciler metrics
reconcile_total = Counter(
    "hahaha_reconcile_total",
    "Total reconcile runs by result",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "hahaha_reconcile_duration_seconds",
    "Reconcile duration in seconds",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

reconcile_actions_total = Counter(
    "hahaha_reconcile_actions_total",
    "Total dependent actions applied by reconciles",
    ["action"],
)

# Leader election metrics
leader_is_leader = Gauge(
    "hahaha_leader_is_leader",
    "Whether this replica currently holds the lease (0 or 1)",
)

leader_transitions_total = Counter(
    "hahaha_leader_transitions_total",
    "Total leadership changes observed by this replica",
    ["transition"],
)

# Sidecar shutdown metrics
SIDECAR_SHUTDOWNS = Counter(
    "hahaha_sidecar_shutdowns",
    "Number of sidecar shutdowns",
    ["container", "job_name", "namespace"],
)

FAILED_SIDECAR_SHUTDOWNS = Counter(
    "hahaha_failed_sidecar_shutdowns",
    "Number of failed sidecar shutdowns",
    ["container", "job_name", "namespace"],
)

UNSUPPORTED_SIDECARS = Counter(
    "hahaha_unsupported_sidecars",
    "Number of unsupported sidecars, by sidecar",
    ["container", "job_name", "namespace"],
)

TOTAL_UNSUCCESSFUL_EVENT_POSTS = Counter(
    "hahaha_total_unsuccessful_event_posts",
    "Total number of unsuccessful Kubernetes Event posts",
)
