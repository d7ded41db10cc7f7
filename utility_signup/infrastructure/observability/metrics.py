"""Prometheus metrics for registration throughput, workflow health and deal sweeps"""

from prometheus_client import Counter, Histogram

# Registration metrics
registration_counter = Counter(
    "utility_registration_total",
    "Automated utility registrations requested",
    ["utility_type", "outcome"],  # started | no_tariff | no_banking | invalid
)

transition_counter = Counter(
    "utility_contract_transitions_total",
    "Contract status transitions",
    ["from_status", "to_status"],
)

# Monitoring metrics
monitor_check_counter = Counter(
    "utility_monitor_checks_total",
    "Registration monitor checks",
    ["outcome"],  # rescheduled | blocked | manual | completed | notify_retry | failed | terminal | missing
)

provider_gateway_failures_counter = Counter(
    "provider_gateway_failures_total",
    "Failed provider API calls",
    ["operation"],  # initiate | poll | document
)

# Deal sweep metrics
deal_sweep_counter = Counter(
    "utility_deal_sweep_contracts_total",
    "Contracts processed by the deal re-evaluation sweep",
    ["outcome"],  # best_deal | better_deal_found | skipped_fresh | failed
)

# Notification metrics
email_latency_histogram = Histogram(
    "completion_email_latency_seconds",
    "Completion e-mail webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "completion_email_failures_total",
    "Failed completion e-mail deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_transition(from_status: str, to_status: str) -> None:
    transition_counter.labels(from_status=from_status, to_status=to_status).inc()


def record_registration(utility_type: str, outcome: str) -> None:
    registration_counter.labels(utility_type=utility_type, outcome=outcome).inc()
