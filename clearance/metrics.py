"""
Prometheus metrics: status transitions, payment updates, side-effect outcomes.
"""
from prometheus_client import Counter, generate_latest

package_transitions_total = Counter(
    "package_transitions_total",
    "Total package status transitions persisted",
    ["status"],
)
transitions_rejected_total = Counter(
    "transitions_rejected_total",
    "Total status change requests rejected before persistence",
    ["reason"],
)
payment_updates_total = Counter(
    "payment_updates_total",
    "Total manual payment status updates persisted",
    ["payment_status"],
)

# Best-effort side effects (activity_log, notification, sync)
side_effect_failures_total = Counter(
    "side_effect_failures_total",
    "Total side-effect steps that failed after a committed status change",
    ["step"],
)
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total customer SMS notifications sent",
    ["type"],
)
sheet_syncs_total = Counter(
    "sheet_syncs_total",
    "Total external sheet sync attempts by outcome",
    ["outcome"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
