"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Gauge

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
    labelnames=["payment_method"],
)

order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions",
    labelnames=["from_status", "to_status"],
)

# Credit pool metrics
credit_pools_created_total = Counter(
    "credit_pools_created_total",
    "Total credit pools created from authorized orders",
)

credit_pool_duplicates_total = Counter(
    "credit_pool_duplicates_total",
    "Pool creations skipped because a pool already existed for the order",
)

credit_pools_deactivated_total = Counter(
    "credit_pools_deactivated_total",
    "Total credit pools deactivated by administrators",
)

# Consumption metrics
credits_consumed_total = Counter(
    "credits_consumed_total",
    "Total credits debited",
)

credit_consumption_rejected_total = Counter(
    "credit_consumption_rejected_total",
    "Credit debits that did not happen",
    labelnames=["reason"],  # no_credits, contention
)

credit_consume_contention_total = Counter(
    "credit_consume_contention_total",
    "Guarded decrements that lost a race and re-selected a pool",
)

# Reconciliation metrics
ledger_inconsistencies_gauge = Gauge(
    "ledger_inconsistencies",
    "Inconsistencies found by the last reconciliation run",
    labelnames=["kind"],  # orphaned_authorization, orphaned_pool, unbalanced_pool
)
