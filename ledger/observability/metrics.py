# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports ledger metrics in Prometheus format.

Metrics:
- Actions applied / rejected, by type and error code
- Settlements by asset and kind
- Mining power minted by source (buy, compound, referral)
- Ledger gauges: total mining power, participants, unclaimed per asset
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry
import logging

logger = logging.getLogger(__name__)

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# ACTION METRICS
# ═══════════════════════════════════════════════════════════════════

actions_total = Counter(
    'minepool_actions_total',
    'Total number of actions processed',
    ['action_type', 'status'],
    registry=metrics_registry
)

action_errors_total = Counter(
    'minepool_action_errors_total',
    'Rejected actions by error code',
    ['code'],
    registry=metrics_registry
)

action_duration_seconds = Histogram(
    'minepool_action_duration_seconds',
    'Time spent applying an action',
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5],
    registry=metrics_registry
)

ledger_sequence = Gauge(
    'minepool_ledger_sequence',
    'Number of committed actions',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# ECONOMIC METRICS
# ═══════════════════════════════════════════════════════════════════

settlements_total = Counter(
    'minepool_settlements_total',
    'Settlement instructions emitted',
    ['asset', 'kind'],
    registry=metrics_registry
)

settled_amount_total = Counter(
    'minepool_settled_amount_total',
    'Value moved by settlement instructions, in smallest units',
    ['asset', 'kind'],
    registry=metrics_registry
)

mining_power_minted_total = Counter(
    'minepool_mining_power_minted_total',
    'Mining power created',
    ['source'],
    registry=metrics_registry
)

total_mining_power = Gauge(
    'minepool_total_mining_power',
    'Total mining power across participants',
    registry=metrics_registry
)

total_unclaimed = Gauge(
    'minepool_total_unclaimed',
    'Value owed but not yet settled',
    ['asset'],
    registry=metrics_registry
)

curve_supply = Gauge(
    'minepool_curve_supply',
    'Bonding curve virtual supply',
    registry=metrics_registry
)

participants_total = Gauge(
    'minepool_participants_total',
    'Number of initialized participants',
    registry=metrics_registry
)


# ═══════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════

def record_action(action, result, duration: float):
    """
    Update counters for a committed action.

    Args:
        action: Applied Action
        result: ActionResult
        duration: Seconds spent in the engine
    """
    actions_total.labels(action_type=action.action_type.value, status='applied').inc()
    action_duration_seconds.observe(duration)
    ledger_sequence.set(result.sequence)

    if result.minted:
        mining_power_minted_total.labels(source='buy').inc(result.minted)
    if result.compounded:
        mining_power_minted_total.labels(source='compound').inc(result.compounded)
    if result.referral_bonus:
        mining_power_minted_total.labels(source='referral').inc(result.referral_bonus)

    for ins in result.settlements:
        settlements_total.labels(asset=ins.asset, kind=ins.kind.value).inc()
        settled_amount_total.labels(asset=ins.asset, kind=ins.kind.value).inc(ins.amount)


def record_rejection(action, code: str):
    actions_total.labels(action_type=action.action_type.value, status='rejected').inc()
    action_errors_total.labels(code=code).inc()


def update_ledger_gauges(ledger):
    """Gauges readable from the global ledger alone, refreshed after every commit."""
    total_mining_power.set(ledger.total_mining_power)
    curve_supply.set(ledger.curve_supply)
    ledger_sequence.set(ledger.sequence)
    for asset, amount in ledger.total_unclaimed.items():
        total_unclaimed.labels(asset=asset).set(amount)


def update_metrics(state):
    """
    Update all gauges from ledger state, including the participant count.
    Called when metrics are scraped.

    Args:
        state: LedgerState instance
    """
    update_ledger_gauges(state.ledger)

    try:
        participants_total.set(len(state.all_participants()))
    except Exception as e:
        logger.debug(f"Failed to count participants: {e}")
