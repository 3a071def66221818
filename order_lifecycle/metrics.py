"""
Prometheus metrics: order classifications (API), lifecycle transitions applied, config failures.
"""
from prometheus_client import Counter, generate_latest

from order_lifecycle.order_state import ClassificationResult, OrderSnapshot

order_classifications_total = Counter(
    "order_classifications_total",
    "Total orders run through the lifecycle state handler",
    ["outcome"],
)
order_state_transitions_total = Counter(
    "order_state_transitions_total",
    "Total automatic order lifecycle transitions",
    ["from_state", "to_state"],
)
order_classification_errors_total = Counter(
    "order_classification_errors_total",
    "Total classifications aborted by a status configuration error",
)


def _label(state) -> str:
    return str(getattr(state, "value", state) or "none")


def record_classification(order: OrderSnapshot, result: ClassificationResult) -> None:
    order_classifications_total.labels(outcome="changed" if result.changed else "unchanged").inc()
    if result.changed and result.state != order.state:
        order_state_transitions_total.labels(
            from_state=_label(order.state),
            to_state=_label(result.state),
        ).inc()


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
