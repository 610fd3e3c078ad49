"""
Vault Invariant Guard - Prometheus Metrics
Observability for the verification pipeline
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry

from vig_enforcement_v1 import LEGITIMATE_EXCEPTION, Verdict

# Create custom registry
metrics_registry = CollectorRegistry()

# ============================================
# DECODING METRICS
# ============================================

decode_failure_counter = Counter(
    'vig_decode_failures_total',
    'Payloads that could not be decoded and degraded to unrecognized',
    ['stage'],  # operation, connector_call, batch
    registry=metrics_registry
)

unwrapped_leaf_counter = Counter(
    'vig_unwrapped_leaves_total',
    'Leaf operations emitted by the batch unwrapper',
    ['kind'],
    registry=metrics_registry
)

dropped_leaf_counter = Counter(
    'vig_dropped_leaves_total',
    'Leaf operations dropped by the batch unwrapper',
    ['reason'],  # non_resource, unrecognized_null_principal, nested_batch
    registry=metrics_registry
)

affected_entries_histogram = Histogram(
    'vig_affected_entries',
    'Size of the controller-expanded affected set per rule run',
    buckets=[0, 1, 2, 5, 10, 20, 50, 100, 250],
    registry=metrics_registry
)

# ============================================
# INVARIANT ENFORCEMENT METRICS
# ============================================

invariant_check_counter = Counter(
    'vig_invariant_checks_total',
    'Total number of invariant entry evaluations',
    ['invariant_id', 'verdict'],
    registry=metrics_registry
)

invariant_violation_counter = Counter(
    'vig_invariant_violations_total',
    'Total number of invariant violations',
    ['invariant_id', 'criticality'],
    registry=metrics_registry
)

skipped_entry_counter = Counter(
    'vig_skipped_entries_total',
    'Entries skipped as inapplicable or on oracle exhaustion',
    ['invariant_id', 'reason'],
    registry=metrics_registry
)

legitimate_exception_counter = Counter(
    'vig_legitimate_exceptions_total',
    'Naive breaches legitimized by an event-log exception',
    ['invariant_id'],
    registry=metrics_registry
)

rule_duration_histogram = Histogram(
    'vig_rule_duration_seconds',
    'Wall-clock duration of one rule pipeline',
    ['invariant_id'],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
    registry=metrics_registry
)

transactions_verified_counter = Counter(
    'vig_transactions_verified_total',
    'Transactions verified',
    ['result'],  # passed, rejected
    registry=metrics_registry
)

last_verification_gauge = Gauge(
    'vig_last_verification_violations',
    'Violation count of the most recent verification',
    registry=metrics_registry
)

# ============================================
# HELPER FUNCTIONS
# ============================================

def record_outcome(invariant_id: str, criticality: str, outcome):
    """Record the metrics for one evaluated entry."""
    invariant_check_counter.labels(
        invariant_id=invariant_id,
        verdict=outcome.verdict.value
    ).inc()

    if outcome.violation is not None:
        invariant_violation_counter.labels(
            invariant_id=invariant_id,
            criticality=criticality
        ).inc()
    elif outcome.verdict is Verdict.SKIP:
        skipped_entry_counter.labels(
            invariant_id=invariant_id,
            reason=outcome.detail or "unknown"
        ).inc()
    elif outcome.detail == LEGITIMATE_EXCEPTION:
        legitimate_exception_counter.labels(invariant_id=invariant_id).inc()

def record_verification(violation_count: int):
    """Record the result of verifying one transaction."""
    transactions_verified_counter.labels(
        result="rejected" if violation_count else "passed"
    ).inc()
    last_verification_gauge.set(violation_count)
