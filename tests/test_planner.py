"""Tests for the reconciliation planner."""

import threading

import pytest

from driftscan.config.models import EnvironmentConfig, ProviderConfig
from driftscan.orchestrator.dependency_graph import DependencyGraph
from driftscan.orchestrator.planner import PlanAction, PlanStatus, ReconciliationPlanner
from driftscan.scanner.diff import DriftClassification, DriftRecord, FieldDiff
from driftscan.state.lock import LockManager
from driftscan.state.models import Snapshot
from driftscan.state.store import StateStore
from driftscan.utils.errors import DependencyError, EnvironmentLockedError, ScanError

from conftest import make_environment


def record(resource_id, classification=DriftClassification.CHANGED):
    return DriftRecord(
        resource_id=resource_id,
        resource_type=resource_id.split("-")[0],
        classification=classification,
        field_diffs={"cidr_block": FieldDiff(declared="a", observed="b")},
    )


@pytest.fixture
def network():
    return make_environment([
        ("subnet-1", {}, ["vpc-1"]),
        ("vpc-1", {}, []),
        ("bucket-1", {}, []),
        ("db-1", {}, ["subnet-1"]),
    ])


@pytest.fixture
def planner():
    return ReconciliationPlanner(LockManager())


def test_dependency_is_planned_before_dependent(planner, network):
    graph = DependencyGraph.from_environment(network)
    plan = planner.create_plan(network, [record("subnet-1"), record("vpc-1")], graph)

    assert plan.order() == ["vpc-1", "subnet-1"]
    assert plan.get_step("subnet-1").depends_on == ["vpc-1"]
    plan.release()


def test_actions_waves_and_unmanaged_last(planner, network):
    graph = DependencyGraph.from_environment(network)
    records = [
        record("subnet-1", DriftClassification.MISSING_IN_OBSERVED),
        record("db-1"),
        record("queue-7", DriftClassification.UNMANAGED),
        record("bucket-1"),
        record("queue-3", DriftClassification.UNMANAGED),
    ]

    plan = planner.create_plan(network, records, graph)

    assert plan.order() == ["subnet-1", "bucket-1", "db-1", "queue-3", "queue-7"]
    assert [step.action for step in plan.steps] == [
        PlanAction.CREATE, PlanAction.UPDATE, PlanAction.UPDATE,
        PlanAction.DELETE, PlanAction.DELETE,
    ]
    assert plan.waves == [["subnet-1", "bucket-1"], ["db-1"], ["queue-3", "queue-7"]]
    assert plan.get_summary() == {"create": 1, "update": 2, "delete": 2}
    plan.release()


def test_plan_holds_lock_until_completed(planner, network):
    graph = DependencyGraph.from_environment(network)
    plan = planner.create_plan(network, [record("vpc-1")], graph)

    assert plan.status == PlanStatus.PENDING
    assert planner.lock_manager.holder("prod") == plan.lock_token
    assert network.lock_token == plan.lock_token

    plan.complete()

    assert plan.status == PlanStatus.COMPLETED
    assert not planner.lock_manager.is_locked("prod")
    assert network.lock_token is None
    with pytest.raises(ScanError):
        plan.complete()


def test_locked_environment_is_refused(planner, network):
    graph = DependencyGraph.from_environment(network)
    first = planner.create_plan(network, [record("vpc-1")], graph)

    with pytest.raises(EnvironmentLockedError):
        planner.create_plan(network, [record("vpc-1")], graph)

    first.fail("abandoned")
    assert first.status == PlanStatus.FAILED
    assert first.failure_reason == "abandoned"
    planner.create_plan(network, [record("vpc-1")], graph).release()


def test_concurrent_plans_for_prod_have_one_winner(planner, network):
    graph = DependencyGraph.from_environment(network)
    barrier = threading.Barrier(2)
    plans, errors = [], []

    def request():
        barrier.wait()
        try:
            plans.append(planner.create_plan(network, [record("vpc-1")], graph))
        except EnvironmentLockedError as e:
            errors.append(e)

    threads = [threading.Thread(target=request) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(plans) == 1
    assert len(errors) == 1
    plans[0].release()


def test_context_manager_fails_plan_on_exception(planner, network):
    graph = DependencyGraph.from_environment(network)

    with pytest.raises(RuntimeError):
        with planner.create_plan(network, [record("vpc-1")], graph) as plan:
            raise RuntimeError("apply failed")

    assert plan.status == PlanStatus.FAILED
    assert "apply failed" in plan.failure_reason
    assert not planner.lock_manager.is_locked("prod")


def test_context_manager_completes_plan(planner, network):
    graph = DependencyGraph.from_environment(network)
    with planner.create_plan(network, [record("vpc-1")], graph) as plan:
        pass
    assert plan.status == PlanStatus.COMPLETED


def test_complete_records_snapshot(tmp_path, network):
    store = StateStore({"prod": EnvironmentConfig(
        name="prod",
        declared=str(tmp_path / "prod.json"),
        state=str(tmp_path / "snapshot.json"),
        provider=ProviderConfig(type="static", path=str(tmp_path / "observed.json")),
    )})
    planner = ReconciliationPlanner(LockManager(), store)
    graph = DependencyGraph.from_environment(network)

    plan = planner.create_plan(network, [record("vpc-1")], graph)
    plan.complete(Snapshot(environment="prod", resources={"vpc-1": {"cidr_block": "b"}}))

    assert store.read_snapshot("prod").get_attributes("vpc-1") == {"cidr_block": "b"}


def test_unknown_drifted_resource_is_rejected(planner, network):
    graph = DependencyGraph.from_environment(network)
    with pytest.raises(DependencyError):
        planner.create_plan(network, [record("nat-1")], graph)
    assert not planner.lock_manager.is_locked("prod")
