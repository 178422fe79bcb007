# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports marketplace metrics in Prometheus format.

Metrics:
- Jobs by status, total escrow held
- Calls by method and outcome
- Provider count, total staked, locked slashed stake
- Escrow accounting (escrowed, paid out, refunded)
"""

from prometheus_client import Counter, Gauge, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# JOB METRICS
# ═══════════════════════════════════════════════════════════════════

jobs_by_status = Gauge(
    'proofmarket_jobs',
    'Number of jobs per lifecycle status',
    ['status'],
    registry=metrics_registry
)

escrow_balance = Gauge(
    'proofmarket_escrow_balance',
    'Tokens currently held by the escrow custody account',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# CALL METRICS
# ═══════════════════════════════════════════════════════════════════

calls_total = Counter(
    'proofmarket_calls_total',
    'Marketplace calls by method and outcome',
    ['method', 'outcome'],
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# PROVIDER METRICS
# ═══════════════════════════════════════════════════════════════════

providers_total = Gauge(
    'proofmarket_providers_total',
    'Number of providers that ever staked',
    registry=metrics_registry
)

total_staked = Gauge(
    'proofmarket_total_staked',
    'Total collateral held in the stake vault for providers',
    registry=metrics_registry
)

locked_slashed = Gauge(
    'proofmarket_locked_slashed',
    'Slashed stake kept in the vault (no slash recipient set)',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# ECONOMIC METRICS
# ═══════════════════════════════════════════════════════════════════

escrowed_total = Gauge(
    'proofmarket_escrowed_total',
    'Total tokens ever escrowed by clients',
    registry=metrics_registry
)

paid_out_total = Gauge(
    'proofmarket_paid_out_total',
    'Total escrow released to providers',
    registry=metrics_registry
)

refunded_total = Gauge(
    'proofmarket_refunded_total',
    'Total escrow refunded to clients',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def record_call(method: str, outcome: str):
    """
    Count a top-level call.

    Args:
        method: Operation name
        outcome: 'committed' or 'reverted'
    """
    calls_total.labels(method=method, outcome=outcome).inc()


def update_metrics(market):
    """
    Update all gauges from marketplace state.
    Called when metrics are scraped.

    Args:
        market: Marketplace instance
    """
    status = market.status()

    for name, count in status["jobs"].items():
        jobs_by_status.labels(status=name).set(count)
    escrow_balance.set(status["escrow_balance"])

    providers_total.set(len(market.list_providers()))
    total_staked.set(status["total_staked"])
    locked_slashed.set(status["locked_slashed"])

    escrowed_total.set(status["escrowed_total"])
    paid_out_total.set(status["paid_out_total"])
    refunded_total.set(status["refunded_total"])
