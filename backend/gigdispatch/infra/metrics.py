import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.bookings = None
            self.dispatches = None
            self.channel_events = None
            self.channel_drops = None
            self.followups = None
            self.worker_cache = None
            self.outbox_queue_depth = None
            self.http_5xx = None
            self.http_latency = None
            self.job_errors = None
            return

        self.bookings = Counter(
            "bookings_total",
            "Booking lifecycle events.",
            ["action"],
            registry=self.registry,
        )
        self.dispatches = Counter(
            "booking_dispatch_total",
            "Booking dispatch plans by mode (instant/scheduled/unmatched/fallback).",
            ["mode"],
            registry=self.registry,
        )
        self.channel_events = Counter(
            "channel_events_published_total",
            "Real-time channel events published by event name.",
            ["event"],
            registry=self.registry,
        )
        self.channel_drops = Counter(
            "channel_events_dropped_total",
            "Real-time channel events dropped because a subscriber queue was full.",
            registry=self.registry,
        )
        self.followups = Counter(
            "booking_followups_total",
            "Post-commit follow-up outcomes by kind.",
            ["kind", "outcome"],
            registry=self.registry,
        )
        self.worker_cache = Counter(
            "worker_query_cache_total",
            "Worker bookings cache lookups by result (hit/miss/invalidate).",
            ["result"],
            registry=self.registry,
        )
        self.outbox_queue_depth = Gauge(
            "outbox_queue_messages",
            "Outbox queue depth by status (pending/retry/dead).",
            ["status"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "route"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency in seconds.",
            ["method", "route", "status_class"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
            registry=self.registry,
        )
        self.job_errors = Counter(
            "job_errors_total",
            "Job execution errors by job and reason.",
            ["job", "reason"],
            registry=self.registry,
        )

    def record_booking(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.bookings is None:
            return
        if count <= 0:
            return
        self.bookings.labels(action=action).inc(count)

    def record_dispatch(self, mode: str) -> None:
        if not self.enabled or self.dispatches is None:
            return
        self.dispatches.labels(mode=mode or "unknown").inc()

    def record_channel_event(self, event: str) -> None:
        if not self.enabled or self.channel_events is None:
            return
        self.channel_events.labels(event=event or "unknown").inc()

    def record_channel_drop(self) -> None:
        if not self.enabled or self.channel_drops is None:
            return
        self.channel_drops.inc()

    def record_followup(self, kind: str, outcome: str) -> None:
        if not self.enabled or self.followups is None:
            return
        self.followups.labels(kind=kind or "unknown", outcome=outcome or "unknown").inc()

    def record_worker_cache(self, result: str) -> None:
        if not self.enabled or self.worker_cache is None:
            return
        self.worker_cache.labels(result=result).inc()

    def set_outbox_depth(self, status: str, count: int) -> None:
        if not self.enabled or self.outbox_queue_depth is None:
            return
        safe_status = status or "unknown"
        self.outbox_queue_depth.labels(status=safe_status).set(max(0, count))

    def record_http_5xx(self, method: str, route: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, route=route).inc()

    def record_http_latency(self, method: str, route: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, route=route, status_class=status_class).observe(
            duration_seconds
        )

    def record_job_error(self, job: str, reason: str) -> None:
        if not self.enabled or self.job_errors is None:
            return
        safe_reason = reason or "unknown"
        self.job_errors.labels(job=job, reason=safe_reason).inc()

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
