"""
Prometheus metrics: orders created, transitions applied/rejected, broadcast and notification outcomes.
"""
from prometheus_client import Counter, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders persisted in status 'received'",
    ["type"],
)

# Transition Authority
order_transitions_total = Counter(
    "order_transitions_total",
    "Total status transitions persisted, by target status",
    ["status"],
)
transitions_rejected_total = Counter(
    "transitions_rejected_total",
    "Total transition requests rejected before or during persistence",
    ["reason"],
)

# Broadcaster (topic_kind: global | order)
broadcast_events_total = Counter(
    "broadcast_events_total",
    "Total events published to a topic",
    ["topic_kind", "event"],
)
broadcast_failures_total = Counter(
    "broadcast_failures_total",
    "Total publish calls that failed (logged, not retried)",
    ["topic_kind"],
)

# Notification dispatcher (outcome: sent | skipped | failed)
notifications_total = Counter(
    "notifications_total",
    "Out-of-band customer notifications by channel and outcome",
    ["channel", "outcome"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
