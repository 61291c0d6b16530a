"""Reconciliation planner ordering drifted resources by dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from driftscan.orchestrator.dependency_graph import DependencyGraph
from driftscan.scanner.diff import DriftClassification, DriftRecord
from driftscan.state.lock import EnvironmentLock, LockManager
from driftscan.state.models import Environment, Snapshot, utcnow
from driftscan.state.store import StateStore
from driftscan.utils.errors import ErrorContext, ScanError
from driftscan.utils.logging import get_logger

logger = get_logger(__name__)


class PlanAction(str, Enum):
    """Action that brings a resource back in line with its declaration."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PlanStatus(str, Enum):
    """Lifecycle of a plan."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIONS = {
    DriftClassification.MISSING_IN_OBSERVED: PlanAction.CREATE,
    DriftClassification.CHANGED: PlanAction.UPDATE,
    DriftClassification.UNMANAGED: PlanAction.DELETE,
}


@dataclass
class PlanStep:
    """One resource to reconcile."""

    resource_id: str
    action: PlanAction
    record: DriftRecord
    wave: int = 0
    depends_on: List[str] = field(default_factory=list)  # Earlier steps this one waits for


@dataclass
class ReconciliationPlan:
    """Ordered reconciliation steps for one environment.

    The plan holds the environment lock until it is completed or failed. Used
    as a context manager it completes on normal exit and fails on exception.
    """

    environment: Environment
    steps: List[PlanStep]
    lock: EnvironmentLock
    state_store: Optional[StateStore] = None
    status: PlanStatus = PlanStatus.PENDING
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def lock_token(self) -> str:
        return self.lock.token

    @property
    def waves(self) -> List[List[str]]:
        """Step identifiers grouped by wave."""
        waves: List[List[str]] = []
        for step in self.steps:
            while len(waves) <= step.wave:
                waves.append([])
            waves[step.wave].append(step.resource_id)
        return waves

    def get_step(self, resource_id: str) -> Optional[PlanStep]:
        for step in self.steps:
            if step.resource_id == resource_id:
                return step
        return None

    def order(self) -> List[str]:
        """Resource identifiers in execution order."""
        return [step.resource_id for step in self.steps]

    def has_changes(self) -> bool:
        return len(self.steps) > 0

    def get_summary(self) -> Dict[str, int]:
        """Count steps by action."""
        summary = {action.value: 0 for action in PlanAction}
        for step in self.steps:
            summary[step.action.value] += 1
        return summary

    def complete(self, snapshot: Optional[Snapshot] = None) -> None:
        """Mark the plan as applied and release the lock.

        Args:
            snapshot: Observed state after reconciliation, recorded as the new
                last applied snapshot

        Raises:
            ScanError: If the plan is no longer pending or the snapshot cannot
                be written (the plan is then failed)
        """
        self._ensure_pending()
        try:
            if snapshot is not None:
                if self.state_store is None:
                    raise ScanError(
                        "Cannot record snapshot: plan has no state store",
                        context=ErrorContext(environment=self.environment.name, operation="complete")
                    )
                self.state_store.write_snapshot(self.environment.name, snapshot)
        except Exception as e:
            self._finish(PlanStatus.FAILED, f"Snapshot write failed: {e}")
            raise
        self._finish(PlanStatus.COMPLETED)

    def fail(self, reason: str) -> None:
        """Mark the plan as failed and release the lock."""
        self._ensure_pending()
        self._finish(PlanStatus.FAILED, reason)

    def release(self) -> None:
        """Release the lock without applying; used for report-only scans."""
        if self.status == PlanStatus.PENDING:
            self._finish(PlanStatus.COMPLETED)

    def _ensure_pending(self) -> None:
        if self.status != PlanStatus.PENDING:
            raise ScanError(
                f"Plan for {self.environment.name} is already {self.status.value}",
                context=ErrorContext(environment=self.environment.name, operation="plan")
            )

    def _finish(self, status: PlanStatus, reason: Optional[str] = None) -> None:
        self.status = status
        self.failure_reason = reason
        self.environment.lock_token = None
        self.lock.release()
        if reason:
            logger.warning(f"Plan for {self.environment.name} failed: {reason}")
        else:
            logger.info(f"Plan for {self.environment.name} {status.value}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.status != PlanStatus.PENDING:
            return
        if exc_type is None:
            self.complete()
        else:
            self.fail(f"{exc_type.__name__}: {exc_val}")


class ReconciliationPlanner:
    """Creates reconciliation plans from drift records."""

    def __init__(self, lock_manager: LockManager, state_store: Optional[StateStore] = None):
        """Initialize the planner.

        Args:
            lock_manager: Grants per-environment locks
            state_store: Store used to record snapshots when plans complete
        """
        self.lock_manager = lock_manager
        self.state_store = state_store

    def create_plan(
        self,
        environment: Environment,
        drift_records: List[DriftRecord],
        graph: DependencyGraph
    ) -> ReconciliationPlan:
        """Order drift records and lock the environment.

        Declared resources follow the graph's topological order. Unmanaged
        resources have no declared dependencies and go last, sorted by id.

        Args:
            environment: Environment being reconciled
            drift_records: Drift records from the diff engine
            graph: Dependency graph of the environment

        Returns:
            Pending plan holding the environment lock

        Raises:
            EnvironmentLockedError: If another plan holds the lock
            CyclicDependencyError: If the graph contains a cycle
            DependencyError: If a drifted resource is not in the graph
        """
        steps = self._order_steps(drift_records, graph)

        lock = self.lock_manager.acquire(environment.name)
        environment.lock_token = lock.token

        plan = ReconciliationPlan(
            environment=environment,
            steps=steps,
            lock=lock,
            state_store=self.state_store,
        )
        logger.info(
            f"Created plan for {environment.name}: {len(steps)} steps in "
            f"{len(plan.waves)} waves"
        )
        return plan

    def _order_steps(self, drift_records: List[DriftRecord], graph: DependencyGraph) -> List[PlanStep]:
        declared: Dict[str, DriftRecord] = {}
        unmanaged: List[DriftRecord] = []
        for record in drift_records:
            if record.classification == DriftClassification.UNMANAGED:
                unmanaged.append(record)
            else:
                # Raises DependencyError for unknown resources
                graph.position(record.resource_id)
                declared[record.resource_id] = record

        steps: List[PlanStep] = []
        waves: Dict[str, int] = {}
        for resource_id in graph.topological_sort():
            record = declared.get(resource_id)
            if record is None:
                continue
            depends_on = [
                dep for dep in graph.get_all_dependencies(resource_id) if dep in declared
            ]
            wave = max((waves[dep] + 1 for dep in depends_on), default=0)
            waves[resource_id] = wave
            steps.append(PlanStep(
                resource_id=resource_id,
                action=ACTIONS[record.classification],
                record=record,
                wave=wave,
                depends_on=depends_on,
            ))

        final_wave = max(waves.values()) + 1 if waves else 0
        for record in sorted(unmanaged, key=lambda r: r.resource_id):
            steps.append(PlanStep(
                resource_id=record.resource_id,
                action=PlanAction.DELETE,
                record=record,
                wave=final_wave,
            ))
        return steps
