from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


remote_requests_total = Counter(
    "tenant_config_remote_requests_total",
    "Total remote authority requests",
    ["operation", "outcome"],
)

remote_request_duration_seconds = Histogram(
    "tenant_config_remote_request_duration_seconds",
    "Remote authority request duration in seconds",
    ["operation"],
)

cache_migrations_total = Counter(
    "tenant_config_cache_migrations_total",
    "Persisted cache migration steps applied",
    ["from_version", "to_version"],
)

cache_migration_resets_total = Counter(
    "tenant_config_cache_migration_resets_total",
    "Persisted cache resets after a failed migration",
)

soft_faults_detected_total = Counter(
    "tenant_config_soft_faults_detected_total",
    "Soft data faults detected while resolving tenant configuration",
    ["kind"],
)

notifications_total = Counter(
    "tenant_config_notifications_total",
    "User-visible notifications by level",
    ["level"],
)


def observe_remote_request(operation: str, outcome: str, duration: float) -> None:
    remote_requests_total.labels(operation=operation, outcome=outcome).inc()
    remote_request_duration_seconds.labels(operation=operation).observe(duration)


def observe_cache_migration(from_version: int, to_version: int) -> None:
    cache_migrations_total.labels(from_version=str(from_version), to_version=str(to_version)).inc()


def observe_cache_migration_reset() -> None:
    cache_migration_resets_total.inc()


def observe_soft_faults(kind: str, count: int = 1) -> None:
    if count > 0:
        soft_faults_detected_total.labels(kind=kind).inc(count)


def observe_notification(level: str) -> None:
    notifications_total.labels(level=level).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
