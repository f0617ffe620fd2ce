"""Prometheus metrics and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server


# Worker metrics
WORKER_EVENT_TOTAL = Counter(
    "dispatch_worker_event_total", "Total queue events processed by the worker", ["status", "action"]
)
WORKER_PROCESS_LATENCY_SECONDS = Histogram(
    "dispatch_worker_process_latency_seconds", "Time to process a single queue event", buckets=(0.05, 0.1, 0.5, 1, 2, 5, 15, 60)
)
WORKER_RETRY_TOTAL = Counter(
    "dispatch_worker_retry_total", "Total event retries scheduled", ["action"]
)
WORKER_DLQ_TOTAL = Counter(
    "dispatch_worker_dlq_total", "Total events sent to DLQ", ["action"]
)
CONFIGURATION_ERROR_TOTAL = Counter(
    "dispatch_configuration_error_total", "Events or sends dropped for configuration errors", ["reason"]
)

# Audit and dispatch
MESSAGE_INITIATED_TOTAL = Counter(
    "dispatch_message_initiated_total", "Recipients targeted by recorded broadcasts", ["type", "test"]
)
SEND_TOTAL = Counter(
    "dispatch_send_total", "Provider send attempts per recipient", ["source", "type", "result"]
)
INVALID_DESTINATION_TOTAL = Counter(
    "dispatch_invalid_destination_total", "Sends skipped because the identity could not be resolved", ["identity"]
)
SEND_LATENCY_SECONDS = Histogram(
    "dispatch_send_latency_seconds", "Provider call latency", buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5)
)

# Delivery feedback
DELIVERY_STATUS_TOTAL = Counter(
    "dispatch_delivery_status_total", "Delivery status callbacks received", ["status"]
)
DELIVERY_STATUS_DELAY_SECONDS = Histogram(
    "dispatch_delivery_status_delay_seconds",
    "Time from dispatch to status callback",
    ["status"],
    buckets=(1, 2, 5, 10, 30, 60, 300, 900, 3600),
)
ESCALATION_TOTAL = Counter(
    "dispatch_escalation_total", "Delivery-issue escalations raised"
)

# Pages
PAGE_DURATION_SECONDS = Histogram(
    "dispatch_page_duration_seconds", "Length of the paged transmission", buckets=(5, 10, 20, 30, 45, 60, 120)
)
PAGE_TO_QUEUE_SECONDS = Histogram(
    "dispatch_page_to_queue_seconds", "Delay from end of transmission to page handling", buckets=(1, 2, 5, 10, 20, 30, 60, 120, 300)
)

# Inbound texts
INBOUND_TEXT_TOTAL = Counter(
    "dispatch_inbound_text_total", "Inbound texts by classification", ["outcome"]
)

# Rate limiting
RATE_LIMIT_WAIT_SECONDS = Histogram(
    "dispatch_rate_limit_wait_seconds", "Seconds waited due to per-identity send limiting", buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1, 2)
)

# Publisher metrics
PUBLISH_ATTEMPT_TOTAL = Counter(
    "dispatch_publish_attempt_total", "Total event publish attempts", ["action", "result"]
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)
