from __future__ import annotations

from prometheus_client import Counter, Gauge

# Deletion pipeline metrics; labelled by outcome, never by tenant, to keep cardinality flat.
deletion_requests_total = Counter(
    "tenant_deletion_requests_total",
    "Deletion requests by resulting action",
    labelnames=("action",),
)

deletion_runs_finished_total = Counter(
    "tenant_deletion_runs_finished_total",
    "Deletion runs that reached a terminal status",
    labelnames=("status",),
)

deletion_steps_completed_total = Counter(
    "tenant_deletion_steps_completed_total",
    "Committed deletion steps per table",
    labelnames=("table",),
)

deletion_rows_deleted_total = Counter(
    "tenant_deletion_rows_deleted_total",
    "Rows removed by deletion steps per table",
    labelnames=("table",),
)

deletion_step_retries_total = Counter(
    "tenant_deletion_step_retries_total",
    "Transient failures retried by the orchestrator",
    labelnames=("table",),
)

deletion_runs_in_progress = Gauge(
    "tenant_deletion_runs_in_progress",
    "Deletion runs currently executing in this process",
)
