from prometheus_client import Counter, Gauge, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "wiser_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "wiser_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Offline sync
SYNC_DRAINS_TOTAL = Counter(
    "wiser_sync_drains_total",
    "Drain attempts by outcome",
    ["outcome"],
)
SYNC_MESSAGES_TOTAL = Counter(
    "wiser_sync_messages_total",
    "Queued messages processed by a drain",
    ["status"],
)
SYNC_DRAIN_SECONDS = Histogram(
    "wiser_sync_drain_seconds",
    "Duration of a drain pass in seconds",
)
SYNC_PENDING_MESSAGES = Gauge(
    "wiser_sync_pending_messages",
    "Messages waiting in the local queue",
)
