"""Prometheus metrics for the outbox relay, broker publishing and consumers."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so tests and multiple app instances don't collide with the
# process-global default registry
REGISTRY = CollectorRegistry()

# Covers publish round-trips from 1ms to 10s
PUBLISH_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# Relay ticks include DB round-trips for every record in the batch
TICK_DURATION_BUCKETS = (
    0.01,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
)

# Outbox relay metrics
outbox_events_published_total = Counter(
    "outbox_events_published_total",
    "Outbox records successfully published and marked PROCESSED.",
    ["event_type"],
    registry=REGISTRY,
)

outbox_events_failed_total = Counter(
    "outbox_events_failed_total",
    "Outbox publish attempts that ended with the record marked FAILED. "
    "The kind label is transient or permanent.",
    ["event_type", "kind"],
    registry=REGISTRY,
)

outbox_batches_aborted_total = Counter(
    "outbox_batches_aborted_total",
    "Relay ticks that stopped early on a transient broker failure.",
    registry=REGISTRY,
)

outbox_ticks_skipped_total = Counter(
    "outbox_ticks_skipped_total",
    "Relay ticks skipped because the previous tick was still running.",
    registry=REGISTRY,
)

outbox_tick_duration_seconds = Histogram(
    "outbox_tick_duration_seconds",
    "Wall time of one relay tick including claim, publish and status updates.",
    buckets=TICK_DURATION_BUCKETS,
    registry=REGISTRY,
)

outbox_stale_claims_released_total = Counter(
    "outbox_stale_claims_released_total",
    "PROCESSING claims released as FAILED because they were older than the stale threshold.",
    registry=REGISTRY,
)

outbox_claims_lost_total = Counter(
    "outbox_claims_lost_total",
    "Records whose claim was released by a reaper before this relay recorded the outcome.",
    registry=REGISTRY,
)

outbox_claim_deadline_stops_total = Counter(
    "outbox_claim_deadline_stops_total",
    "Relay ticks that stopped publishing so their claims would not turn stale.",
    registry=REGISTRY,
)

outbox_records_deleted_total = Counter(
    "outbox_records_deleted_total",
    "PROCESSED outbox records removed by retention cleanup.",
    registry=REGISTRY,
)

outbox_records = Gauge(
    "outbox_records",
    "Outbox records by status at the last statistics sample. "
    "The exhausted status counts FAILED records past the retry cap.",
    ["status"],
    registry=REGISTRY,
)

# Broker publishing metrics
broker_publish_total = Counter(
    "broker_publish_total",
    "Broker publish attempts by outcome (success, transient, permanent).",
    ["outcome"],
    registry=REGISTRY,
)

broker_publish_duration_seconds = Histogram(
    "broker_publish_duration_seconds",
    "Duration of successful broker publishes in seconds.",
    buckets=PUBLISH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

# Consumer metrics
consumer_messages_total = Counter(
    "consumer_messages_total",
    "Messages handled by consumers, by consumer and disposition "
    "(ack, nack_requeue, nack_drop).",
    ["consumer", "disposition"],
    registry=REGISTRY,
)

consumer_duplicates_total = Counter(
    "consumer_duplicates_total",
    "Redeliveries acknowledged without side effects because the message id was already seen.",
    ["consumer"],
    registry=REGISTRY,
)

# Event publisher facade metrics
direct_publish_failures_total = Counter(
    "direct_publish_failures_total",
    "Non-durable publishes that failed. Notifications and audit events are lost "
    "on failure; the category label tells which.",
    ["category"],
    registry=REGISTRY,
)

analytics_events_total = Counter(
    "analytics_events_total",
    "Events observed on the audit fanout by the analytics sink, by category.",
    ["category"],
    registry=REGISTRY,
)
