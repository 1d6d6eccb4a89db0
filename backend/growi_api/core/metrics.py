"""Prometheus metrics shared by the API and the task worker"""

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "growi_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "growi_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
LOGIN_ATTEMPTS = Counter(
    "growi_login_attempts_total",
    "Login attempts by outcome",
    ["outcome"],
)
TASK_QUEUE_DEPTH_GAUGE = Gauge("growi_task_queue_depth", "Number of queued background tasks")
WORKER_UP_GAUGE = Gauge("growi_task_worker_up", "Worker liveness (1 running, 0 stopped)")
