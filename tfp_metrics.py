"""
TradeFlow Pools - Prometheus Metrics
Observability for pool funding, settlement and enforcement
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry

# Create custom registry
metrics_registry = CollectorRegistry()

# ============================================
# BUSINESS METRICS
# ============================================

receivable_created_counter = Counter(
    'tfp_receivables_created_total',
    'Total number of trade receivables created',
    registry=metrics_registry
)

receivable_verified_counter = Counter(
    'tfp_receivables_verified_total',
    'Total number of trade receivables verified',
    registry=metrics_registry
)

pool_created_counter = Counter(
    'tfp_pools_created_total',
    'Total number of financing pools created',
    ['pool_type'],
    registry=metrics_registry
)

investment_counter = Counter(
    'tfp_investments_total',
    'Total number of accepted investments',
    registry=metrics_registry
)

investment_amount_histogram = Histogram(
    'tfp_investment_amount_dollars',
    'Accepted investment amounts in dollars',
    buckets=[100, 500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000],
    registry=metrics_registry
)

capital_committed_gauge = Gauge(
    'tfp_capital_committed_dollars',
    'Capital committed to pools that have not yet closed',
    registry=metrics_registry
)

# ============================================
# SETTLEMENT METRICS
# ============================================

disbursement_counter = Counter(
    'tfp_disbursements_total',
    'Exporter disbursements executed',
    registry=metrics_registry
)

payment_counter = Counter(
    'tfp_payments_recorded_total',
    'Repayments recorded against funded pools',
    ['payment_status'],
    registry=metrics_registry
)

distribution_counter = Counter(
    'tfp_distributions_total',
    'Yield distributions completed',
    registry=metrics_registry
)

pool_status_counter = Counter(
    'tfp_pool_transitions_total',
    'Pool status transitions',
    ['status'],
    registry=metrics_registry
)

rejected_operation_counter = Counter(
    'tfp_rejected_operations_total',
    'Operations rejected with a domain error',
    ['operation', 'code'],
    registry=metrics_registry
)

# ============================================
# INVARIANT ENFORCEMENT METRICS
# ============================================

invariant_check_counter = Counter(
    'tfp_invariant_checks_total',
    'Total number of invariant checks',
    ['invariant_id', 'check_type', 'result'],
    registry=metrics_registry
)

ledger_integrity_gauge = Gauge(
    'tfp_decision_ledger_integrity',
    'Decision ledger integrity (1=verified, 0=compromised)',
    registry=metrics_registry
)

# ============================================
# HELPER FUNCTIONS
# ============================================

def record_invariant_check(invariant_id: str, check_type: str, result: bool):
    """Record invariant check metrics."""
    invariant_check_counter.labels(
        invariant_id=invariant_id,
        check_type=check_type,
        result="passed" if result else "failed"
    ).inc()

def record_investment(amount_micro: int):
    investment_counter.inc()
    investment_amount_histogram.observe(amount_micro / 1_000_000)
    capital_committed_gauge.inc(amount_micro / 1_000_000)

def record_rejection(operation: str, code: str):
    rejected_operation_counter.labels(operation=operation, code=code).inc()

def record_transition(status: str):
    pool_status_counter.labels(status=status).inc()

def release_committed_capital(amount_micro: int):
    capital_committed_gauge.dec(amount_micro / 1_000_000)
