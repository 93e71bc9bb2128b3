"""
kumo — Declarative catalog reconciliation.

Converges a remote commerce catalog onto a desired state described in
YAML, creating, updating or skipping entities as needed.
"""

__version__ = "0.1.0"

from kumo.bulk import BulkOrchestrator
from kumo.config import KumoConfig
from kumo.models import BatchSummary, BootstrapResult, EntityInput
from kumo.reconciler import EntityReconciler

__all__ = [
    "BatchSummary",
    "BootstrapResult",
    "BulkOrchestrator",
    "EntityInput",
    "EntityReconciler",
    "KumoConfig",
]
