"""Custom metrics for the group ordering flow."""

from opentelemetry import metrics

meter = metrics.get_meter("table-order-svc")

consensus_evaluation_counter = meter.create_counter(
    name="consensus_evaluations_total",
    description="Readiness predicate evaluations by resulting state",
    unit="1",
)

group_order_counter = meter.create_counter(
    name="group_orders_submitted_total",
    description="Total number of group orders submitted",
    unit="1",
)

claim_lost_counter = meter.create_counter(
    name="submission_claims_lost_total",
    description="Readiness rounds where another participant won the submission claim",
    unit="1",
)

resync_failure_counter = meter.create_counter(
    name="consensus_resync_failures_total",
    description="Notification-driven re-fetches that failed against storage",
    unit="1",
)

order_submission_duration = meter.create_histogram(
    name="order_submission_duration_seconds",
    description="Duration of order plus order item creation",
    unit="s",
)


def record_consensus_evaluation(state: str) -> None:
    """Record one evaluation of the readiness predicate.

    Args:
        state: Resulting consensus state (e.g. "waiting", "ready")
    """
    consensus_evaluation_counter.add(1, {"state": state})


def record_group_order(item_count: int) -> None:
    """Record a submitted group order.

    Args:
        item_count: Number of order items created
    """
    group_order_counter.add(1, {"has_items": item_count > 0})


def record_claim_lost() -> None:
    claim_lost_counter.add(1)


def record_resync_failure(error_type: str) -> None:
    resync_failure_counter.add(1, {"error_type": error_type})


def record_order_submission_duration(duration_seconds: float) -> None:
    order_submission_duration.record(duration_seconds)
