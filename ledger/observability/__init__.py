# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides metrics and monitoring for the minepool ledger.
"""

from .metrics import metrics_registry, update_metrics, update_ledger_gauges, record_action, record_rejection

__all__ = ['metrics_registry', 'update_metrics', 'update_ledger_gauges', 'record_action', 'record_rejection']
