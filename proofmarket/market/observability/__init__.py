# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides Prometheus metrics for the marketplace node.
"""

from .metrics import metrics_registry, update_metrics, record_call

__all__ = ['metrics_registry', 'update_metrics', 'record_call']
