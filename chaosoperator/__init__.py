"""Reconciliation core for LitmusChaos ChaosEngine resources."""

from chaosoperator.models import ChaosEngine, EngineInfo, EngineState, EngineStatus, NamespacedName
from chaosoperator.reconciler import ChaosEngineReconciler, ReconcileResult

__all__ = [
    "ChaosEngine",
    "EngineInfo",
    "EngineState",
    "EngineStatus",
    "NamespacedName",
    "ChaosEngineReconciler",
    "ReconcileResult",
]
