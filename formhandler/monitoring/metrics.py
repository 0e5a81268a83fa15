"""
Prometheus instrumentation for handler executions.

Metrics are module-level collectors registered on the default registry. Recording is
skipped when the settings disable metrics.
"""

from prometheus_client import Counter, Histogram

execution_counter = Counter(
    'formhandler_executions_total',
    'Total number of handler executions by outcome',
    ['outcome']
)

field_failure_counter = Counter(
    'formhandler_field_failures_total',
    'Total number of per-field validation failures by rule type',
    ['rule_type']
)

existence_check_counter = Counter(
    'formhandler_existence_checks_total',
    'Total number of datastore existence checks by outcome',
    ['that', 'outcome']
)

execution_duration = Histogram(
    'formhandler_execution_duration_seconds',
    'Time spent executing a handler',
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)


class HandlerMetrics:
    """Thin recorder bound to the enabled flag of one handler."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def record_execution(self, succeeded: bool, duration: float) -> None:
        if not self.enabled:
            return
        execution_counter.labels(outcome='success' if succeeded else 'failure').inc()
        execution_duration.observe(duration)

    def record_field_failure(self, rule_type: str) -> None:
        if self.enabled:
            field_failure_counter.labels(rule_type=rule_type).inc()

    def record_existence_check(self, that: str, passed: bool) -> None:
        if self.enabled:
            existence_check_counter.labels(
                that=that,
                outcome='passed' if passed else 'failed'
            ).inc()
