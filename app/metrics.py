"""
app/metrics.py

Prometheus metrics for queues, audits and external calls.
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry(auto_describe=True)

QUEUE_WAITING = Gauge(
    "poi_audit_queue_waiting",
    "Jobs waiting or delayed per queue",
    ["queue"],
    registry=REGISTRY,
)
QUEUE_ACTIVE = Gauge(
    "poi_audit_queue_active",
    "Jobs currently running per queue",
    ["queue"],
    registry=REGISTRY,
)
QUEUE_COMPLETED_TOTAL = Counter(
    "poi_audit_queue_completed_total",
    "Jobs completed per queue",
    ["queue"],
    registry=REGISTRY,
)
QUEUE_FAILED_TOTAL = Counter(
    "poi_audit_queue_failed_total",
    "Job attempts that failed per queue and outcome (retry or terminal)",
    ["queue", "outcome"],
    registry=REGISTRY,
)
WORKERS_RECOMMENDED = Gauge(
    "poi_audit_workers_recommended",
    "Worker count recommended by the auto-scaler",
    registry=REGISTRY,
)

AUDIT_DURATION_SECONDS = Histogram(
    "poi_audit_audit_duration_seconds",
    "Wall time of one comparison",
    buckets=(1, 2.5, 5, 10, 20, 30, 60, 120),
    registry=REGISTRY,
)
AUDIT_SCORE = Histogram(
    "poi_audit_audit_score",
    "Overall audit scores",
    buckets=(20, 40, 60, 80, 90, 100),
    registry=REGISTRY,
)
AUDITS_COMPLETED_TOTAL = Counter(
    "poi_audit_audits_completed_total",
    "Audits finished per resulting POI status",
    ["status"],
    registry=REGISTRY,
)

API_REQUESTS_TOTAL = Counter(
    "poi_audit_api_requests_total",
    "External calls per service and outcome",
    ["service", "outcome"],
    registry=REGISTRY,
)
API_COST_TOTAL = Counter(
    "poi_audit_api_cost_total",
    "Recorded external cost per service",
    ["service"],
    registry=REGISTRY,
)
LLM_TOKENS_TOTAL = Counter(
    "poi_audit_llm_tokens_total",
    "LLM tokens per model and direction",
    ["model", "direction"],
    registry=REGISTRY,
)
CRAWLER_PAGES_TOTAL = Counter(
    "poi_audit_crawler_pages_total",
    "Crawled URLs per outcome",
    ["outcome"],
    registry=REGISTRY,
)
EMAILS_TOTAL = Counter(
    "poi_audit_emails_total",
    "Outbox entries per final status",
    ["status"],
    registry=REGISTRY,
)


def render_latest() -> bytes:
    """Serialize the registry in the Prometheus text exposition format."""
    return generate_latest(REGISTRY)
