"""Dependency ordering, reconciliation planning and scan orchestration."""

from .dependency_graph import DependencyGraph
from .orchestrator import EnvironmentScan, ScanOrchestrator
from .planner import (
    PlanAction,
    PlanStatus,
    PlanStep,
    ReconciliationPlan,
    ReconciliationPlanner,
)

__all__ = [
    "DependencyGraph",
    "PlanAction",
    "PlanStatus",
    "PlanStep",
    "ReconciliationPlan",
    "ReconciliationPlanner",
    "EnvironmentScan",
    "ScanOrchestrator",
]
